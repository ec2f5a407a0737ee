"""集中配置管理

提供统一的配置入口，支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from recipekit.core.exceptions import ConfigError, ValidationError
from recipekit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

TEST_POLICIES = ("fail-closed", "fail-open")


@dataclass
class Config:
    """全局配置"""

    # 目录
    recipes_file: str = "recipes/manifest.yml"
    install_root: str = "data/cellar"
    cache_dir: str = "data/cache"
    work_dir: str = "data/work"
    registry_file: str = "data/installed.yml"

    # 拉取
    fetch_retries: int = 3
    fetch_backoff: float = 1.0       # 首次重试等待秒数，之后指数翻倍
    fetch_timeout: int = 60
    cache_max_bytes: int = 2 * 1024 * 1024 * 1024

    # 构建
    max_workers: int = 4
    command_timeout: int = 3600
    test_policy: str = "fail-closed"  # fail-closed | fail-open
    toolchain_paths: list[str] = field(default_factory=list)

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.test_policy not in TEST_POLICIES:
            raise ConfigError(
                f"test_policy 无效: {self.test_policy}，可选: {', '.join(TEST_POLICIES)}"
            )
        if self.fetch_retries < 1:
            raise ConfigError(f"fetch_retries 至少为 1: {self.fetch_retries}")

    @classmethod
    def from_file(cls, path: str = "configs/recipekit.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except ValidationError as e:
            raise ConfigError(f"配置文件无法解析: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效 {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "configs/recipekit.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
