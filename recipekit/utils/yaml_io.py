"""清单 / 配置 / 注册表文件读写

- 读取: 缺失或空文件视为空映射；语法错误、顶层不是映射、文件过大
  都转换为 ValidationError（CLI 输出 VALIDATION_ERROR 而不是堆栈）
- 写入: 同目录临时文件 + os.replace，注册表和缓存索引不会出现半截文件
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from recipekit.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

# 配方清单再大也不会超过这个量级
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """整体替换 path 的内容；失败时原文件保持不变，临时文件被清理"""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent,
        prefix=f".{path.name}.", suffix=".tmp", delete=False,
    ) as f:
        tmp = Path(f.name)
        try:
            f.write(content)
        except BaseException:
            f.close()
            tmp.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取一个顶层为映射的 YAML 文档"""
    p = Path(path)
    if not p.is_file():
        return {}
    size = p.stat().st_size
    if size > MAX_DOCUMENT_BYTES:
        raise ValidationError(f"文件过大: {p} ({size} 字节，上限 {MAX_DOCUMENT_BYTES})")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f"{p}:{mark.line + 1}" if mark is not None else str(p)
        logger.error("YAML 解析失败 %s: %s", where, e)
        raise ValidationError(f"YAML 语法错误: {where}", details=[str(e)]) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"{p} 顶层必须是映射，实际为 {type(data).__name__}")
    return data


def save_yaml(path: str | Path, data: dict[str, Any]) -> None:
    """保持键顺序写出，中文不转义"""
    text = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    atomic_write(Path(path), text)
