"""取消信号 — 在网络拉取与子进程执行两个挂起点之间传播"""

from __future__ import annotations

import threading

from recipekit.core.exceptions import Cancelled


class CancelToken:
    """可在线程间共享的取消令牌"""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "用户取消") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """等待至多 timeout 秒，被取消时提前返回 True（用于可中断的退避等待）"""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, what: str = "") -> None:
        if self._event.is_set():
            label = f"{what}: " if what else ""
            raise Cancelled(f"{label}{self.reason}")
