"""源码包拉取器

职责:
- 缓存优先: 摘要已在缓存中直接返回，不访问网络
- 下载到临时文件 → 校验摘要 → 通过后移入缓存；不一致则丢弃并抛 IntegrityError
- 网络失败指数退避重试，重试耗尽后抛出最后一次 FetchError
- 同一摘要的并发请求合并为一次下载，所有等待者得到相同结果或同类异常
- head 源（VCS）浅克隆，不经过缓存
"""

from __future__ import annotations

import copy
import logging
import shutil
import threading
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Callable, TypeVar

from recipekit.core.exceptions import Cancelled, FetchError, IntegrityError, RecipeKitError
from recipekit.core.fetch.transport import GitCheckout, Transport, UrlTransport
from recipekit.core.fetch.verifier import compute_digest, verify
from recipekit.utils.net import url_filename

if TYPE_CHECKING:
    from recipekit.core.fetch.cache import ContentCache
    from recipekit.core.models import CacheEntry, Digest
    from recipekit.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 等待其他线程下载时轮询取消信号的间隔（秒）
_WAIT_INTERVAL = 0.1


class _InFlight:
    """进行中的下载（每个摘要一个），完成后唤醒所有等待者"""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.entry: CacheEntry | None = None
        self.error: Exception | None = None


class Fetcher:
    """配方源码拉取器 - 缓存优先 + 校验 + 重试"""

    def __init__(
        self,
        cache: ContentCache,
        transport: Transport | None = None,
        *,
        retries: int = 3,
        backoff: float = 1.0,
        git: GitCheckout | None = None,
    ) -> None:
        self.cache = cache
        self.transport = transport or UrlTransport()
        self.retries = max(1, retries)
        self.backoff = backoff
        self.git = git or GitCheckout()
        self._lock = threading.Lock()
        self._inflight: dict[str, _InFlight] = {}

    def fetch(
        self, url: str, expected: Digest, *, cancel: CancelToken | None = None,
    ) -> CacheEntry:
        """拉取 url 内容并按 expected 摘要校验，返回缓存条目"""
        entry = self.cache.get(expected)
        if entry is not None:
            logger.info("缓存命中，跳过下载: %s", expected)
            return entry

        with self._lock:
            flight = self._inflight.get(expected.key)
            leader = flight is None
            if leader:
                # 上一个下载可能刚刚完成，加锁后再查一次
                entry = self.cache.get(expected)
                if entry is not None:
                    return entry
                flight = _InFlight()
                self._inflight[expected.key] = flight

        if not leader:
            return self._wait_for(flight, expected, cancel)

        try:
            flight.entry = self._download_verified(url, expected, cancel)
            return flight.entry
        except Exception as e:
            flight.error = e
            raise
        finally:
            with self._lock:
                self._inflight.pop(expected.key, None)
            flight.done.set()

    def fetch_head(
        self, url: str, dest: Path, *, cancel: CancelToken | None = None,
    ) -> str:
        """浅克隆 head 源到 dest，返回 commit id"""
        def attempt() -> str:
            # 超时/取消的克隆会留下不完整目录，git 拒绝克隆到非空目录
            shutil.rmtree(dest, ignore_errors=True)
            return self.git.clone(url, dest, cancel=cancel)

        return self._with_retries(attempt, url, cancel)

    # ------------------------------------------------------------------

    def _wait_for(
        self, flight: _InFlight, expected: Digest, cancel: CancelToken | None,
    ) -> CacheEntry:
        logger.info("相同摘要正在下载，等待: %s", expected)
        while not flight.done.wait(_WAIT_INTERVAL):
            if cancel is not None:
                cancel.raise_if_cancelled(f"等待下载 {expected}")
        if isinstance(flight.error, RecipeKitError):
            raise _own_copy(flight.error) from flight.error
        if flight.error is not None:
            raise flight.error
        if flight.entry is None:
            raise FetchError(f"并发下载未产生结果: {expected}")
        return flight.entry

    def _download_verified(
        self, url: str, expected: Digest, cancel: CancelToken | None,
    ) -> CacheEntry:
        tmp = self.cache.tmp_dir / f"{expected.value[:16]}-{uuid.uuid4().hex[:8]}.part"
        try:
            self._with_retries(
                lambda: self.transport.download(url, tmp, cancel=cancel), url, cancel,
            )
            if not verify(tmp, expected):
                actual = compute_digest(tmp, expected.algorithm)
                logger.error("摘要不匹配，丢弃下载: %s (期望 %s, 实际 %s)",
                             url, expected, actual)
                raise IntegrityError(
                    f"摘要不匹配 {url}: 期望 {expected}, 实际 {actual}",
                    expected=expected.key, actual=actual.key,
                )
            logger.info("  摘要校验通过: %s", expected)
            return self.cache.put(expected, tmp, filename=url_filename(url), url=url)
        finally:
            tmp.unlink(missing_ok=True)

    def _with_retries(
        self, action: Callable[[], T], url: str, cancel: CancelToken | None,
    ) -> T:
        """执行 action，仅对 FetchError 指数退避重试"""
        for attempt in range(1, self.retries + 1):
            if cancel is not None:
                cancel.raise_if_cancelled(f"拉取 {url}")
            try:
                return action()
            except FetchError as e:
                if attempt >= self.retries:
                    logger.error("拉取失败，已重试 %d 次: %s", self.retries, url)
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning("拉取失败 (第 %d/%d 次)，%.1f 秒后重试: %s",
                               attempt, self.retries, delay, e)
                self._sleep(delay, cancel)
        raise FetchError(f"拉取失败: {url}", url=url)

    @staticmethod
    def _sleep(delay: float, cancel: CancelToken | None) -> None:
        if delay <= 0:
            return
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise Cancelled(f"重试等待被取消: {cancel.reason}")


def _own_copy(err: RecipeKitError) -> RecipeKitError:
    """每个等待者拿到独立的异常对象，各自标注自己的配方/阶段"""
    clone = copy.copy(err)
    clone.recipe = ""
    clone.stage = ""
    return clone
