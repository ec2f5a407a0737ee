"""安装管理器 — 拉取 → 校验 → 解析依赖 → 构建 → 测试 → 提交

状态机（每个配方）:
  PENDING → FETCHING → VERIFYING → RESOLVING_DEPS → BUILDING → TESTING → INSTALLED
  任一非终态出错 → FAILED；FAILED / INSTALLED 经显式卸载 → ROLLED_BACK
  FAILED / ROLLED_BACK / INSTALLED 可重新从 PENDING 开始

保证:
  - 只有迁移到 INSTALLED 时才写注册表；之前的状态只存在于内存
  - 失败时安装根目录下不留任何部分文件（staging + 原子 rename），工作目录被清理
  - 依赖的 INSTALLED 先于依赖方的 BUILDING；同一批互不依赖的配方可并行构建
  - 已安装且配方定义未变时 install() 直接返回成功，不重新构建
  - 异常原样抛出（只标注 recipe / stage），不会被降级为成功
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from recipekit.core.exceptions import (
    DependencyError,
    InstallError,
    IntegrityError,
    RecipeKitError,
    StateError,
    TestFailure,
    ValidationError,
)
from recipekit.core.fetch.verifier import verify
from recipekit.core.models import (
    InstalledPackage,
    InstallReport,
    InstallState,
    Recipe,
    Toolchain,
    can_transition,
)
from recipekit.core.resolver import DependencyResolver
from recipekit.utils.archive import unpack

if TYPE_CHECKING:
    from recipekit.core.fetch.fetcher import Fetcher
    from recipekit.core.models import BuildResult
    from recipekit.core.recipe_book import RecipeBook
    from recipekit.services.build.runner import BuildRunner
    from recipekit.services.install.registry import InstalledRegistry
    from recipekit.utils.cancel import CancelToken
    from recipekit.utils.shell import CommandResult

logger = logging.getLogger(__name__)

FAIL_CLOSED = "fail-closed"


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="microseconds")


class InstallManager:
    """配方安装编排器"""

    def __init__(
        self,
        recipes: RecipeBook,
        fetcher: Fetcher,
        runner: BuildRunner,
        registry: InstalledRegistry,
        *,
        install_root: str | Path,
        work_root: str | Path,
        resolver: DependencyResolver | None = None,
        test_policy: str = FAIL_CLOSED,
        max_workers: int = 1,
        toolchain_paths: list[str] | None = None,
    ) -> None:
        self.recipes = recipes
        self.fetcher = fetcher
        self.runner = runner
        self.registry = registry
        self.resolver = resolver or DependencyResolver()
        self.install_root = Path(install_root)
        self.work_root = Path(work_root)
        self.test_policy = test_policy
        self.max_workers = max(1, max_workers)
        self.toolchain_paths = [os.path.expanduser(p) for p in toolchain_paths or []]
        self.install_root.mkdir(parents=True, exist_ok=True)
        self.work_root.mkdir(parents=True, exist_ok=True)

        self._state_lock = threading.Lock()
        self._states: dict[str, InstallState] = {}
        self._history: dict[str, list[InstallState]] = {}
        self._errors: dict[str, RecipeKitError] = {}
        self._name_locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # 状态
    # ------------------------------------------------------------------

    def state_of(self, name: str) -> InstallState | None:
        """当前状态；本进程未操作过时以注册表为准"""
        with self._state_lock:
            state = self._states.get(name)
        if state is None and self.registry.get(name) is not None:
            return InstallState.INSTALLED
        return state

    def transitions(self, name: str) -> list[InstallState]:
        """本进程内观察到的状态迁移序列"""
        with self._state_lock:
            return list(self._history.get(name, []))

    def last_error(self, name: str) -> RecipeKitError | None:
        with self._state_lock:
            return self._errors.get(name)

    def _transition(self, name: str, dst: InstallState) -> InstallState:
        src = self.state_of(name)
        with self._state_lock:
            if not can_transition(src, dst):
                raise StateError(
                    f"非法状态迁移 {name}: {src.value if src else None} -> {dst.value}"
                )
            self._states[name] = dst
            self._history.setdefault(name, []).append(dst)
        logger.debug("状态: %s -> %s", name, dst.value,
                     extra={"recipe": name, "stage": dst.value})
        return dst

    def _name_lock(self, name: str) -> threading.Lock:
        with self._state_lock:
            return self._name_locks.setdefault(name, threading.Lock())

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def install(
        self,
        name: str,
        *,
        head: bool = False,
        force: bool = False,
        cancel: CancelToken | None = None,
    ) -> InstallReport:
        """安装单个配方（连同尚未安装的依赖）"""
        recipe = self.recipes.get(name)
        if head and not recipe.head_url:
            raise ValidationError(f"配方 {name} 未声明 head 源")
        # 依赖图有缺陷时不应产生任何下载
        self.resolver.resolve(recipe, self.recipes.all())
        built: list[str] = []
        report = self._install_recipe(
            recipe, head=head, force=force, cancel=cancel, built=built,
        )
        report.installed = list(built)
        return report

    def install_many(
        self, names: list[str], *, cancel: CancelToken | None = None,
    ) -> dict[str, InstallReport | RecipeKitError]:
        """批量安装，互相独立的配方在工作线程池中并行；结果与输入顺序一致"""
        def one(n: str) -> InstallReport | RecipeKitError:
            try:
                return self.install(n, cancel=cancel)
            except RecipeKitError as e:
                return e

        if self.max_workers == 1 or len(names) <= 1:
            return {n: one(n) for n in names}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(one, n) for n in names]
            return {n: f.result() for n, f in zip(names, futures)}

    def _install_recipe(
        self,
        recipe: Recipe,
        *,
        head: bool,
        force: bool,
        cancel: CancelToken | None,
        built: list[str],
    ) -> InstallReport:
        name = recipe.name
        with self._name_lock(name):
            existing = self.registry.get(name)
            if not force and self._is_current(recipe, existing, head):
                logger.info("已安装且配方未变化，跳过: %s@%s", name, existing.version)
                return InstallReport(
                    name=name, state=InstallState.INSTALLED,
                    package=existing, skipped=True,
                )

            self._transition(name, InstallState.PENDING)
            work_dir = self.work_root / f"{name}-{uuid.uuid4().hex[:8]}"
            stage = InstallState.PENDING
            build: BuildResult | None = None
            try:
                stage = self._transition(name, InstallState.FETCHING)
                if head:
                    source_dir = work_dir / "src"
                    commit = self.fetcher.fetch_head(recipe.head_url, source_dir, cancel=cancel)
                    verified, version = f"git:{commit}", f"HEAD-{commit[:7]}"
                    stage = self._transition(name, InstallState.VERIFYING)
                else:
                    # 固定缓存条目直到解压完成，其他配方的下载不会把它淘汰
                    with self.fetcher.cache.pinned(recipe.digest):
                        entry = self.fetcher.fetch(recipe.url, recipe.digest, cancel=cancel)
                        stage = self._transition(name, InstallState.VERIFYING)
                        if not verify(entry.path, recipe.digest):
                            self.fetcher.cache.remove(recipe.digest)
                            raise IntegrityError(
                                f"缓存内容与摘要不一致（已剔除）: {recipe.digest}",
                                expected=recipe.digest.key,
                            )
                        # 依赖安装之后不再读取缓存
                        source_dir = unpack(entry.path, work_dir / "src", entry.filename)
                    verified, version = recipe.digest.key, recipe.version

                stage = self._transition(name, InstallState.RESOLVING_DEPS)
                self._ensure_dependencies(recipe, cancel=cancel, built=built)

                stage = self._transition(name, InstallState.BUILDING)
                toolchain = self._toolchain(recipe)
                build = self.runner.build(
                    recipe, self.install_root, source_dir,
                    toolchain=toolchain, cancel=cancel,
                )

                stage = self._transition(name, InstallState.TESTING)
                test_failure = self._run_tests(recipe, build, toolchain, cancel)

                package = self._commit(recipe, build, verified=verified,
                                       version=version, head=head)
                self._transition(name, InstallState.INSTALLED)
            except RecipeKitError as e:
                self._fail(name, stage, e, build)
                raise
            except OSError as e:
                err = InstallError(f"{stage.value} 阶段文件系统错误: {e}")
                self._fail(name, stage, err, build)
                raise err from e
            except Exception as e:
                err = InstallError(f"{stage.value} 阶段异常: {type(e).__name__}: {e}")
                self._fail(name, stage, err, build)
                raise err from e
            finally:
                shutil.rmtree(work_dir, ignore_errors=True)

        built.append(name)
        logger.info("安装完成: %s@%s -> %s", name, package.version, package.install_path,
                    extra={"recipe": name, "stage": InstallState.INSTALLED.value})
        return InstallReport(
            name=name, state=InstallState.INSTALLED,
            package=package, test_failure=test_failure,
        )

    def _is_current(
        self, recipe: Recipe, existing: InstalledPackage | None, head: bool,
    ) -> bool:
        if existing is None or existing.head != head:
            return False
        if not Path(existing.install_path).is_dir():
            logger.warning("注册表记录存在但安装目录丢失，将重新安装: %s", recipe.name)
            return False
        return existing.fingerprint == recipe.fingerprint()

    def _ensure_dependencies(
        self, recipe: Recipe, *, cancel: CancelToken | None, built: list[str],
    ) -> None:
        """按拓扑顺序确保所有依赖已安装，同一批内并行"""
        available = self.recipes.all()
        order = self.resolver.resolve(recipe, available)
        deps = order[:-1]
        if not deps:
            return
        logger.info("依赖顺序 %s: %s", recipe.name, " -> ".join(deps))
        for wave in self.resolver.levels(deps, available):
            self._run_wave([available[n] for n in wave], cancel=cancel, built=built)

    def _run_wave(
        self, wave: list[Recipe], *, cancel: CancelToken | None, built: list[str],
    ) -> None:
        def one(dep: Recipe) -> None:
            self._install_recipe(dep, head=False, force=False, cancel=cancel, built=built)

        if self.max_workers == 1 or len(wave) == 1:
            for dep in wave:
                one(dep)
            return

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(wave))) as pool:
            futures = [pool.submit(one, dep) for dep in wave]
            errors = [f.exception() for f in futures]
        # 等整批结束后再按声明顺序抛出第一个错误
        for err in errors:
            if err is not None:
                raise err

    def _toolchain(self, recipe: Recipe) -> Toolchain:
        """由已安装的构建依赖 bin 目录 + 配置中的工具链路径组成"""
        paths: list[str] = []
        for dep in reversed(self.resolver.resolve(recipe, self.recipes.all())[:-1]):
            pkg = self.registry.get(dep)
            if pkg is not None:
                paths.append(str(Path(pkg.install_path) / "bin"))
        paths.extend(self.toolchain_paths)
        return Toolchain(paths=paths)

    def _run_tests(
        self,
        recipe: Recipe,
        build: BuildResult,
        toolchain: Toolchain,
        cancel: CancelToken | None,
    ) -> TestFailure | None:
        try:
            build.test_results = self.runner.test(
                recipe, build.staging_path, toolchain=toolchain, cancel=cancel,
            )
        except TestFailure as e:
            if self.test_policy == FAIL_CLOSED:
                raise
            logger.warning("测试失败但策略为 %s，继续提交: %s: %s",
                           self.test_policy, recipe.name, e)
            build.test_failure = e
        return build.test_failure

    def _commit(
        self,
        recipe: Recipe,
        build: BuildResult,
        *,
        verified: str,
        version: str,
        head: bool,
    ) -> InstalledPackage:
        """staging 原子提升到 <install_root>/<name>/<version> 并写注册表"""
        target = self.install_root / recipe.name / version
        target.parent.mkdir(parents=True, exist_ok=True)
        previous = self.registry.get(recipe.name)

        backup: Path | None = None
        if target.exists():
            backup = target.with_name(f".{target.name}.old-{uuid.uuid4().hex[:8]}")
            os.replace(target, backup)
        os.replace(build.staging_path, target)

        package = InstalledPackage(
            name=recipe.name,
            version=version,
            install_path=str(target),
            digest=verified,
            installed_at=_now(),
            fingerprint=recipe.fingerprint(),
            head=head,
        )
        try:
            self.registry.commit(package)
        except OSError:
            logger.error("注册表写入失败，回滚安装目录: %s", target)
            shutil.rmtree(target, ignore_errors=True)
            if backup is not None:
                os.replace(backup, target)
            raise

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
        if previous is not None and Path(previous.install_path) != target:
            logger.info("删除旧版本: %s", previous.install_path)
            shutil.rmtree(previous.install_path, ignore_errors=True)
        return package

    def _fail(
        self,
        name: str,
        stage: InstallState,
        err: RecipeKitError,
        build: BuildResult | None,
    ) -> None:
        err.annotate(name, stage.value)
        if build is not None and build.staging_path.exists():
            shutil.rmtree(build.staging_path, ignore_errors=True)
        with self._state_lock:
            self._errors[name] = err
        self._transition(name, InstallState.FAILED)
        logger.error("安装失败 %s (阶段 %s): %s", name, stage.value, err,
                     extra={"recipe": name, "stage": stage.value})

    # ------------------------------------------------------------------
    # 卸载 / 查询 / 测试
    # ------------------------------------------------------------------

    def uninstall(self, name: str, *, force: bool = False) -> bool:
        """卸载；未安装时返回 False（幂等）。存在已安装的依赖方时拒绝，除非 force"""
        with self._name_lock(name):
            package = self.registry.get(name)
            if package is None:
                if self.state_of(name) == InstallState.FAILED:
                    self._transition(name, InstallState.ROLLED_BACK)
                logger.info("未安装，无需卸载: %s", name)
                return False

            dependents = self.dependents_of(name)
            if dependents and not force:
                raise DependencyError(
                    f"{name} 仍被已安装的包依赖: {', '.join(dependents)}"
                )

            install_path = Path(package.install_path)
            trash = install_path.with_name(f".{install_path.name}.trash-{uuid.uuid4().hex[:8]}")
            try:
                if install_path.exists():
                    os.replace(install_path, trash)
                self.registry.remove(name)
            except OSError as e:
                if trash.exists() and not install_path.exists():
                    os.replace(trash, install_path)
                raise InstallError(f"卸载失败 {name}: {e}").annotate(name, "uninstall") from e

            shutil.rmtree(trash, ignore_errors=True)
            _remove_if_empty(install_path.parent)
            self._transition(name, InstallState.ROLLED_BACK)
            logger.info("已卸载: %s@%s", name, package.version)
            return True

    def dependents_of(self, name: str) -> list[str]:
        """直接依赖 name 的已安装包"""
        available = self.recipes.all()
        return [
            p.name for p in self.registry.list_all()
            if p.name != name and p.name in available
            and name in available[p.name].build_dependencies
        ]

    def list_installed(self) -> list[InstalledPackage]:
        return self.registry.list_all()

    def run_tests(
        self, name: str, *, cancel: CancelToken | None = None,
    ) -> list[CommandResult]:
        """对已安装的包重新执行 test 命令"""
        package = self.registry.get(name)
        if package is None:
            raise InstallError(f"未安装: {name}").annotate(name, "test")
        recipe = self.recipes.get(name)
        try:
            return self.runner.test(
                recipe, Path(package.install_path),
                toolchain=self._toolchain(recipe), cancel=cancel,
            )
        except RecipeKitError as e:
            raise e.annotate(name, InstallState.TESTING.value)


def _remove_if_empty(path: Path) -> None:
    try:
        path.rmdir()
    except OSError:
        pass
