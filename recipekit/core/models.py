"""核心数据模型

所有核心数据类集中定义，fetch / resolver / build / install 各层统一从此处导入。
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from recipekit.core.exceptions import ValidationError

if TYPE_CHECKING:
    from pathlib import Path

    from recipekit.core.exceptions import TestFailure
    from recipekit.utils.shell import CommandResult

DEFAULT_DIGEST_ALGORITHM = "sha256"

_HEX_RE = re.compile(r"^[0-9a-f]+$")
_SAFE_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.+@\-]*$")


# =========================================================================
# 内容摘要
# =========================================================================


@dataclass(frozen=True)
class Digest:
    """带算法标识的内容摘要，文本形式 "<algorithm>:<hex>" """

    algorithm: str
    value: str

    def __post_init__(self) -> None:
        if self.algorithm not in hashlib.algorithms_available:
            raise ValidationError(f"不支持的摘要算法: {self.algorithm}")
        if not self.value or not _HEX_RE.match(self.value):
            raise ValidationError(f"摘要值不是小写十六进制: {self.value!r}")

    @classmethod
    def parse(cls, text: str) -> Digest:
        """解析 "sha256:abcd..."；不带算法前缀时按 sha256 处理"""
        text = str(text).strip()
        if ":" in text:
            algorithm, value = text.split(":", 1)
        else:
            algorithm, value = DEFAULT_DIGEST_ALGORITHM, text
        return cls(algorithm=algorithm.strip().lower(), value=value.strip().lower())

    @property
    def key(self) -> str:
        return f"{self.algorithm}:{self.value}"

    def __str__(self) -> str:
        return self.key


# =========================================================================
# 配方
# =========================================================================


@dataclass(frozen=True)
class Recipe:
    """声明式配方 — 如何获取、构建、验证一个包；加载后不可变"""

    name: str
    url: str
    digest: Digest
    version: str
    description: str = ""
    homepage: str = ""
    head_url: str = ""
    build_dependencies: tuple[str, ...] = ()
    install_commands: tuple[Any, ...] = ()
    test_commands: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if not _SAFE_NAME_RE.match(self.name or ""):
            raise ValidationError(f"配方名称非法: {self.name!r}")
        if not self.version:
            raise ValidationError(f"配方 {self.name} 未声明 version")
        if not self.url:
            raise ValidationError(f"配方 {self.name} 未声明 url")
        if self.name in self.build_dependencies:
            raise ValidationError(f"配方 {self.name} 不能依赖自身")

    def fingerprint(self) -> str:
        """配方定义指纹 — 任一字段变化都会改变指纹"""
        payload = asdict(self)
        payload["digest"] = self.digest.key
        raw = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=list)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "homepage": self.homepage,
            "url": self.url,
            "head": self.head_url,
            "digest": self.digest.key,
            "version": self.version,
            "build_dependencies": list(self.build_dependencies),
            "install": [_command_text(c) for c in self.install_commands],
            "test": [_command_text(c) for c in self.test_commands],
        }


def _command_text(cmd: Any) -> str:
    return cmd if isinstance(cmd, str) else " ".join(cmd)


# =========================================================================
# 安装状态
# =========================================================================


class InstallState(str, Enum):
    """单个配方的安装状态机

    PENDING → FETCHING → VERIFYING → RESOLVING_DEPS → BUILDING → TESTING → INSTALLED
    任一非终态 → FAILED；FAILED / INSTALLED → ROLLED_BACK（显式卸载）
    """

    PENDING = "pending"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    RESOLVING_DEPS = "resolving_deps"
    BUILDING = "building"
    TESTING = "testing"
    INSTALLED = "installed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


TRANSITIONS: dict[InstallState, frozenset[InstallState]] = {
    InstallState.PENDING: frozenset({InstallState.FETCHING, InstallState.FAILED}),
    InstallState.FETCHING: frozenset({InstallState.VERIFYING, InstallState.FAILED}),
    InstallState.VERIFYING: frozenset({InstallState.RESOLVING_DEPS, InstallState.FAILED}),
    InstallState.RESOLVING_DEPS: frozenset({InstallState.BUILDING, InstallState.FAILED}),
    InstallState.BUILDING: frozenset({InstallState.TESTING, InstallState.FAILED}),
    InstallState.TESTING: frozenset({InstallState.INSTALLED, InstallState.FAILED}),
    InstallState.INSTALLED: frozenset({InstallState.ROLLED_BACK, InstallState.PENDING}),
    InstallState.FAILED: frozenset({InstallState.ROLLED_BACK, InstallState.PENDING}),
    InstallState.ROLLED_BACK: frozenset({InstallState.PENDING}),
}


def can_transition(src: InstallState | None, dst: InstallState) -> bool:
    """判断状态迁移是否合法（src=None 表示此前从未出现）"""
    if src is None:
        return dst == InstallState.PENDING
    return dst in TRANSITIONS[src]


# =========================================================================
# 已安装包 / 缓存条目
# =========================================================================


@dataclass
class InstalledPackage:
    """已安装包记录 — 仅在构建+测试成功后由注册表写入"""

    name: str
    version: str
    install_path: str
    digest: str
    installed_at: str
    state: str = InstallState.INSTALLED.value
    fingerprint: str = ""
    head: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CacheEntry:
    """内容寻址缓存条目 — 以摘要为键，创建后只读"""

    digest: Digest
    path: str
    size: int
    fetched_at: float
    last_used: float = 0.0
    filename: str = ""
    url: str = ""


# =========================================================================
# 构建结果
# =========================================================================


@dataclass
class Toolchain:
    """注入给 BuildRunner 的工具链句柄（额外 PATH + 环境变量）"""

    paths: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class BuildResult:
    """一次构建的结果（staging 目录尚未提升到安装根目录）"""

    recipe: str
    staging_path: Path
    work_dir: Path
    duration: float = 0.0
    commands: list[CommandResult] = field(default_factory=list)
    test_results: list[CommandResult] = field(default_factory=list)
    test_failure: TestFailure | None = None


@dataclass
class InstallReport:
    """install() 的返回值"""

    name: str
    state: InstallState
    package: InstalledPackage | None = None
    installed: list[str] = field(default_factory=list)  # 本次实际构建的配方（含依赖）
    skipped: bool = False  # 已安装且定义未变，直接返回
    test_failure: TestFailure | None = None

    @property
    def success(self) -> bool:
        return self.state == InstallState.INSTALLED
