"""统一异常体系

所有业务异常继承 RecipeKitError。每种异常带有:
  - code:      稳定的错误类别标识（CLI stderr / Web JSON 输出）
  - exit_code: CLI 进程退出码
  - recipe / stage: 由 InstallManager 在失败时标注，说明失败的配方与所处阶段

CLI 层据此输出 "<code> [<recipe>@<stage>]: <message>"，Web 层据此映射 HTTP 状态码。
"""

from __future__ import annotations


class RecipeKitError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"
    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.recipe = ""
        self.stage = ""

    def annotate(self, recipe: str, stage: str) -> RecipeKitError:
        """标注失败位置（只在首次标注时生效，依赖失败时保留最内层位置）"""
        if not self.recipe:
            self.recipe = recipe
            self.stage = stage
        return self

    def describe(self) -> str:
        where = f" [{self.recipe}@{self.stage}]" if self.recipe else ""
        return f"{self.code}{where}: {self}"


class ConfigError(RecipeKitError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(RecipeKitError):
    """输入数据校验失败（配方字段、URL 协议等）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# =========================================================================
# 拉取 / 校验
# =========================================================================


class FetchError(RecipeKitError):
    """网络拉取失败（瞬时错误，Fetcher 内部重试）"""

    code = "FETCH_ERROR"

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class IntegrityError(RecipeKitError):
    """内容摘要与配方声明不一致（致命，不重试）"""

    code = "INTEGRITY_ERROR"

    def __init__(self, message: str, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


# =========================================================================
# 依赖
# =========================================================================


class DependencyError(RecipeKitError):
    """依赖关系错误（配方编写缺陷）"""

    code = "DEPENDENCY_ERROR"
    exit_code = 2


class DependencyCycleError(DependencyError):
    """依赖图中存在环"""

    code = "DEPENDENCY_CYCLE"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"依赖存在环: {' -> '.join(cycle)}")
        self.cycle = cycle


class UnresolvedDependencyError(DependencyError):
    """声明的依赖不在可用配方中"""

    code = "UNRESOLVED_DEPENDENCY"

    def __init__(self, name: str, required_by: str = "") -> None:
        by = f" (被 {required_by} 依赖)" if required_by else ""
        super().__init__(f"依赖不存在: {name}{by}")
        self.name = name
        self.required_by = required_by


class RecipeNotFoundError(DependencyError):
    """请求的配方不存在"""

    code = "RECIPE_NOT_FOUND"


# =========================================================================
# 构建 / 测试
# =========================================================================


class CommandFailure(RecipeKitError):
    """配方命令非零退出（携带命令、退出码和捕获的输出）"""

    def __init__(
        self, message: str, *,
        command: str = "", returncode: int | None = None,
        stdout: str = "", stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class BuildError(CommandFailure):
    """安装命令失败"""

    code = "BUILD_ERROR"
    exit_code = 3


class TestFailure(CommandFailure):
    """安装后测试命令失败（是否致命取决于测试策略）"""

    __test__ = False  # 防止 pytest 将其当作测试类收集

    code = "TEST_FAILURE"
    exit_code = 4


class Cancelled(RecipeKitError):
    """用户或系统发起的取消"""

    code = "CANCELLED"
    exit_code = 5


# =========================================================================
# 安装管理
# =========================================================================


class StateError(RecipeKitError):
    """非法的状态迁移"""

    code = "STATE_ERROR"


class InstallError(RecipeKitError):
    """提交/卸载阶段的文件系统错误"""

    code = "INSTALL_ERROR"
