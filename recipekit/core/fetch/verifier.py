"""内容校验 — 纯函数，无副作用"""

from __future__ import annotations

import hashlib
import hmac
from pathlib import Path

from recipekit.core.models import Digest

CHUNK_SIZE = 64 * 1024


def compute_digest(path: str | Path, algorithm: str = "sha256") -> Digest:
    """流式计算文件摘要"""
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return Digest(algorithm=algorithm, value=h.hexdigest())


def verify(path: str | Path, expected: Digest) -> bool:
    """文件内容摘要是否与 expected 一致；文件不存在视为不一致"""
    try:
        actual = compute_digest(path, expected.algorithm)
    except FileNotFoundError:
        return False
    return hmac.compare_digest(actual.value, expected.value)
