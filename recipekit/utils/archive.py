"""源码包解压

按缓存条目的原始文件名判断格式:
  - .tar / .tar.gz / .tgz / .tar.bz2 / .tar.xz → tarfile（data 过滤器，拒绝越界路径）
  - .zip → zipfile（逐项检查路径不越界）
  - 其他 → 原样复制到工作目录

解压后若只有一个顶层目录（如 GitHub 归档的 Loop-master/），返回该目录作为构建目录。
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import zipfile
from pathlib import Path

from recipekit.core.exceptions import BuildError

logger = logging.getLogger(__name__)

_TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")


def unpack(src: str | Path, dest: Path, filename: str = "") -> Path:
    """把 src 解压/复制到 dest，返回构建目录"""
    src = Path(src)
    name = (filename or src.name).lower()
    dest.mkdir(parents=True, exist_ok=True)
    try:
        if name.endswith(_TAR_SUFFIXES):
            with tarfile.open(src) as tf:
                tf.extractall(path=str(dest), filter="data")  # noqa: S202
        elif name.endswith(".zip"):
            _extract_zip(src, dest)
        else:
            shutil.copy2(src, dest / (filename or src.name))
            return dest
    except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
        raise BuildError(f"源码包解压失败 {filename or src}: {e}") from e

    children = [p for p in dest.iterdir() if not p.name.startswith(".")]
    if len(children) == 1 and children[0].is_dir():
        logger.info("  源码目录: %s", children[0])
        return children[0]
    return dest


def _extract_zip(src: Path, dest: Path) -> None:
    root = dest.resolve()
    with zipfile.ZipFile(src) as zf:
        for member in zf.namelist():
            target = (dest / member).resolve()
            if root != target and root not in target.parents:
                raise BuildError(f"zip 条目越界: {member}")
        zf.extractall(dest)
