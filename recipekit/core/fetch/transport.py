"""传输层 — Fetcher 调用的网络能力

- UrlTransport: http/https/file 下载（urllib，分块写入，块间检查取消信号）
- GitCheckout:  head 源的浅克隆（git 命令经 CommandExecutor 执行）

Transport 协议便于测试注入 fake，实现计数 / 故障注入。
"""

from __future__ import annotations

import logging
import re
import subprocess
import urllib.error
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from recipekit.core.exceptions import FetchError
from recipekit.utils.net import validate_url_scheme
from recipekit.utils.shell import CommandExecutor, get_executor

if TYPE_CHECKING:
    from recipekit.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_SAFE_GIT_URL_RE = re.compile(r"^[a-zA-Z0-9_.:/@~+\-]+$")


class Transport(Protocol):
    """下载协议：把 url 的内容写入 dest，网络失败抛 FetchError"""

    def download(
        self, url: str, dest: Path, *, cancel: CancelToken | None = None,
    ) -> None:
        ...


class UrlTransport:
    """基于 urllib 的下载实现"""

    def __init__(self, timeout: float = 60) -> None:
        self.timeout = timeout

    def download(
        self, url: str, dest: Path, *, cancel: CancelToken | None = None,
    ) -> None:
        validate_url_scheme(url, context="recipe source")
        logger.info("  下载: %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp, \
                    open(dest, "wb") as out:  # nosec B310
                while True:
                    if cancel is not None:
                        cancel.raise_if_cancelled(f"下载 {url}")
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    out.write(chunk)
        except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
            dest.unlink(missing_ok=True)
            raise FetchError(f"下载失败: {url} - {e}", url=url) from e


class GitCheckout:
    """head 源浅克隆"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: float = 600) -> None:
        self._executor = executor
        self.timeout = timeout

    @property
    def executor(self) -> CommandExecutor:
        return self._executor or get_executor()

    def clone(
        self, url: str, dest: Path, *, cancel: CancelToken | None = None,
    ) -> str:
        """克隆到 dest，返回 HEAD commit id；失败抛 FetchError"""
        if not _SAFE_GIT_URL_RE.match(url):
            raise FetchError(f"head URL 包含非法字符: {url}", url=url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info("  克隆 head: %s -> %s", url, dest)
        try:
            r = self.executor.execute(
                ["git", "clone", "--depth", "1", url, str(dest)],
                cwd=str(dest.parent), timeout=self.timeout, cancel=cancel,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            raise FetchError(f"git clone 失败: {url} - {e}", url=url) from e
        if not r.success:
            raise FetchError(
                f"git clone 失败 (rc={r.returncode}): {r.stderr[:300]}", url=url,
            )
        r = self.executor.execute(
            ["git", "rev-parse", "HEAD"], cwd=str(dest), cancel=cancel,
        )
        if not r.success:
            raise FetchError(f"无法读取 head commit: {r.stderr[:300]}", url=url)
        return r.stdout.strip()
