"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
LocalExecutor 在每条退出路径（正常结束、超时、取消）上都会回收子进程句柄。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from recipekit.core.exceptions import Cancelled

if TYPE_CHECKING:
    from recipekit.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

# 轮询取消信号的间隔（秒）
POLL_INTERVAL = 0.1


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    command: str
    returncode: int
    stdout: str
    stderr: str
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    测试时可注入 fake 实现，无需 patch subprocess。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        """执行命令并返回结果；被取消时抛 Cancelled，超时时抛 subprocess.TimeoutExpired"""
        ...


def to_argv(cmd: str | list[str] | tuple[str, ...]) -> list[str]:
    return shlex.split(cmd) if isinstance(cmd, str) else list(cmd)


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地子进程执行器（默认实现，不经过 shell）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        args = to_argv(cmd)
        text = cmd if isinstance(cmd, str) else shlex.join(args)
        start = time.monotonic()
        with subprocess.Popen(
            args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            text=True, errors="replace", cwd=cwd, env=env,
        ) as proc:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if cancel is not None and cancel.cancelled:
                        _terminate(proc)
                        raise Cancelled(f"命令已取消: {text} ({cancel.reason})") from None
                    if timeout is not None and time.monotonic() - start > timeout:
                        _terminate(proc)
                        raise subprocess.TimeoutExpired(args, timeout) from None
        return CommandResult(
            command=text,
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - start,
        )


def _terminate(proc: subprocess.Popen[str]) -> None:
    """杀掉子进程并读空管道，确保句柄被回收"""
    proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("子进程 %s 在 kill 后仍未退出", proc.pid)


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor
