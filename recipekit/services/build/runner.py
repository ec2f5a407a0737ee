"""构建执行器

职责:
- 在工作目录中依次执行配方的 install 命令，产物写入 staging 目录
- 任一命令非零退出: 删除 staging，抛 BuildError（携带命令、退出码、输出）
- 在临时目录中执行 test 命令，失败抛 TestFailure
- 工具链以 Toolchain 句柄注入（PATH / 环境变量），不依赖全局环境

staging 目录位于 <install_root>/.staging/ 下，与最终安装目录同一文件系统，
由 InstallManager 在成功后原子 rename 到正式位置。
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from recipekit.core.exceptions import BuildError, CommandFailure, TestFailure
from recipekit.core.models import BuildResult, Recipe, Toolchain
from recipekit.utils.shell import CommandExecutor, CommandResult, get_executor, to_argv

if TYPE_CHECKING:
    from recipekit.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

STAGING_DIR_NAME = ".staging"

# 失败时在异常消息中保留的输出长度
_OUTPUT_TAIL = 2000


class BuildRunner:
    """配方命令执行器"""

    def __init__(
        self, executor: CommandExecutor | None = None, command_timeout: float = 3600,
    ) -> None:
        self._executor = executor
        self.command_timeout = command_timeout

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    @staticmethod
    def staging_root(install_root: Path) -> Path:
        return Path(install_root) / STAGING_DIR_NAME

    def build(
        self,
        recipe: Recipe,
        install_root: Path,
        work_dir: Path,
        *,
        toolchain: Toolchain | None = None,
        cancel: CancelToken | None = None,
    ) -> BuildResult:
        """执行 install 命令，返回含 staging 路径的 BuildResult"""
        staging = self.staging_root(install_root) / f"{recipe.name}-{uuid.uuid4().hex[:8]}"
        staging.mkdir(parents=True)
        result = BuildResult(recipe=recipe.name, staging_path=staging, work_dir=work_dir)
        start = time.monotonic()
        logger.info("开始构建: %s@%s (cwd=%s)", recipe.name, recipe.version, work_dir)
        try:
            for cmd in recipe.install_commands:
                result.commands.append(self._run(
                    recipe, cmd, cwd=work_dir, prefix=staging,
                    toolchain=toolchain, cancel=cancel, error_cls=BuildError,
                ))
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        result.duration = time.monotonic() - start
        logger.info("构建完成: %s (%d 条命令, %.1fs)",
                    recipe.name, len(result.commands), result.duration)
        return result

    def test(
        self,
        recipe: Recipe,
        prefix: Path,
        *,
        toolchain: Toolchain | None = None,
        cancel: CancelToken | None = None,
    ) -> list[CommandResult]:
        """在临时目录中执行 test 命令，{prefix} 指向 prefix"""
        results: list[CommandResult] = []
        if not recipe.test_commands:
            return results
        scratch = Path(tempfile.mkdtemp(prefix=f"{recipe.name}-test-"))
        try:
            for cmd in recipe.test_commands:
                results.append(self._run(
                    recipe, cmd, cwd=scratch, prefix=Path(prefix),
                    toolchain=toolchain, cancel=cancel, error_cls=TestFailure,
                ))
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
        logger.info("测试通过: %s (%d 条命令)", recipe.name, len(results))
        return results

    # ------------------------------------------------------------------

    def _run(
        self,
        recipe: Recipe,
        cmd: Any,
        *,
        cwd: Path,
        prefix: Path,
        toolchain: Toolchain | None,
        cancel: CancelToken | None,
        error_cls: type[CommandFailure],
    ) -> CommandResult:
        placeholders = {
            "{prefix}": str(prefix),
            "{bin}": str(prefix / "bin"),
            "{lib}": str(prefix / "lib"),
            "{name}": recipe.name,
            "{version}": recipe.version,
            "{work_dir}": str(cwd),
        }
        argv = [_expand(arg, placeholders) for arg in to_argv(cmd)]
        if not argv:
            return CommandResult(command="", returncode=0, stdout="", stderr="")
        text = " ".join(argv)
        label = "测试" if error_cls is TestFailure else "构建"
        logger.info("  %s: %s", label, text)

        try:
            r = self.executor.execute(
                argv, cwd=str(cwd), env=self._env(prefix, toolchain),
                timeout=self.command_timeout, cancel=cancel,
            )
        except subprocess.TimeoutExpired as e:
            raise error_cls(
                f"{label}命令超时 ({self.command_timeout}s): {text}", command=text,
            ) from e
        except OSError as e:
            raise error_cls(
                f"{label}命令无法执行: {text} - {e}", command=text, returncode=127,
            ) from e

        if not r.success:
            logger.error("  %s失败 (rc=%d): %s\n%s", label, r.returncode, text,
                         r.stderr[-_OUTPUT_TAIL:])
            raise error_cls(
                f"{label}失败 (rc={r.returncode}): {text}\n{r.stderr[-_OUTPUT_TAIL:]}",
                command=text, returncode=r.returncode,
                stdout=r.stdout, stderr=r.stderr,
            )
        return r

    @staticmethod
    def _env(prefix: Path, toolchain: Toolchain | None) -> dict[str, str]:
        env = dict(os.environ)
        paths = [str(prefix / "bin")]
        if toolchain is not None:
            env.update(toolchain.env)
            paths = list(toolchain.paths) + paths
        env["PATH"] = os.pathsep.join(paths + [env.get("PATH", os.defpath)])
        env["RECIPEKIT_PREFIX"] = str(prefix)
        return env


def _expand(arg: str, placeholders: dict[str, str]) -> str:
    for key, value in placeholders.items():
        arg = arg.replace(key, value)
    return arg
