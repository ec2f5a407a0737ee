"""日志输出

所有日志写 stderr（stdout 只留给命令结果）。安装流水线通过
extra={"recipe": ..., "stage": ...} 附带上下文:
  - 文本格式: 在消息前加 "[recipe@stage]"，与错误输出的位置标记一致
  - JSON 格式（RECIPEKIT_LOG_JSON=1）: 作为独立字段，便于 CI 里按配方检索
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(where)s%(message)s"

# Web 服务的访问日志只在 DEBUG 时放行
_NOISY_LOGGERS = ("werkzeug",)


def _context(record: logging.LogRecord) -> dict[str, str]:
    ctx: dict[str, str] = {}
    for key in ("recipe", "stage"):
        value = getattr(record, key, None)
        if value:
            ctx[key] = str(value)
    return ctx


class RecipeFormatter(logging.Formatter):
    """文本格式，带配方上下文前缀"""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context(record)
        if "recipe" in ctx:
            stage = f"@{ctx['stage']}" if "stage" in ctx else ""
            record.where = f"[{ctx['recipe']}{stage}] "
        else:
            record.where = ""
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """一行一个 JSON 对象: time / level / logger / message [+ recipe, stage, exception]"""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, str] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level: str = "INFO", json_output: bool = False, stream: IO[str] | None = None,
) -> logging.Handler:
    """替换根日志器的 handler，重复调用不会叠加输出；返回新 handler"""
    reset_logging()
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else RecipeFormatter())
    root = logging.getLogger()
    root.setLevel(numeric)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if numeric <= logging.DEBUG else logging.WARNING)
    return handler


def reset_logging() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
