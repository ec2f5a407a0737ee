"""服务容器 — 统一依赖注入，CLI 与 Web 层不直接构造各组件

依赖关系图（→ 表示依赖）:
  fetcher  → cache
  manager  → recipes, fetcher, runner, registry

同一容器内的实例共享状态（缓存索引、进行中的下载、安装状态等）。

用法:
    container = ServiceContainer()
    manager = container.manager          # 懒加载

    cfg = Config.from_file("my_config.yml")
    container = ServiceContainer(config=cfg)

    from recipekit.services.container import get_container
    get_container().cache.entries()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recipekit.core.config import Config
    from recipekit.core.fetch.cache import ContentCache
    from recipekit.core.fetch.fetcher import Fetcher
    from recipekit.core.recipe_book import RecipeBook
    from recipekit.services.build.runner import BuildRunner
    from recipekit.services.install.manager import InstallManager
    from recipekit.services.install.registry import InstalledRegistry

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        self._lock = threading.RLock()
        if config is None:
            from recipekit.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def recipes(self) -> RecipeBook:
        with self._lock:
            if "recipes" not in self._instances:
                from recipekit.core.recipe_book import RecipeBook
                self._instances["recipes"] = RecipeBook(self._config.recipes_file)
            return self._instances["recipes"]  # type: ignore[return-value]

    @property
    def cache(self) -> ContentCache:
        with self._lock:
            if "cache" not in self._instances:
                from recipekit.core.fetch.cache import ContentCache
                self._instances["cache"] = ContentCache(
                    self._config.cache_dir,
                    max_bytes=self._config.cache_max_bytes,
                )
            return self._instances["cache"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> Fetcher:
        with self._lock:
            if "fetcher" not in self._instances:
                from recipekit.core.fetch.fetcher import Fetcher
                from recipekit.core.fetch.transport import UrlTransport
                self._instances["fetcher"] = Fetcher(
                    self.cache,
                    UrlTransport(timeout=self._config.fetch_timeout),
                    retries=self._config.fetch_retries,
                    backoff=self._config.fetch_backoff,
                )
            return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def runner(self) -> BuildRunner:
        with self._lock:
            if "runner" not in self._instances:
                from recipekit.services.build.runner import BuildRunner
                self._instances["runner"] = BuildRunner(
                    command_timeout=self._config.command_timeout,
                )
            return self._instances["runner"]  # type: ignore[return-value]

    @property
    def registry(self) -> InstalledRegistry:
        with self._lock:
            if "registry" not in self._instances:
                from recipekit.services.install.registry import InstalledRegistry
                self._instances["registry"] = InstalledRegistry(self._config.registry_file)
            return self._instances["registry"]  # type: ignore[return-value]

    @property
    def manager(self) -> InstallManager:
        with self._lock:
            if "manager" not in self._instances:
                from recipekit.services.install.manager import InstallManager
                self._instances["manager"] = InstallManager(
                    self.recipes,
                    self.fetcher,
                    self.runner,
                    self.registry,
                    install_root=self._config.install_root,
                    work_root=self._config.work_dir,
                    test_policy=self._config.test_policy,
                    max_workers=self._config.max_workers,
                    toolchain_paths=self._config.toolchain_paths,
                )
            return self._instances["manager"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
