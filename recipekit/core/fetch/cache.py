"""内容寻址缓存

目录结构:
  <root>/objects/<algorithm>/<hex>   缓存内容（文件名即摘要）
  <root>/tmp/                        下载中的临时文件，校验通过后 rename 进 objects
  <root>/index.json                  索引: 摘要 -> 大小 / 拉取时间 / 最近使用时间 / 来源

缓存策略:
  - 同一摘要最多写入一次，之后只读
  - 总大小超过 max_bytes 时按最近最少使用 (LRU) 淘汰
  - 正在使用（pinned）的条目不会被淘汰，总大小可暂时超过上限
  - 索引与文件不一致（文件被删除）时自动剔除该条目
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from recipekit.core.models import CacheEntry, Digest
from recipekit.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


class ContentCache:
    """以内容摘要为键的本地缓存"""

    def __init__(self, root: str | Path, max_bytes: int = 0) -> None:
        self.root = Path(root)
        self.max_bytes = max_bytes  # 0 表示不限制
        self.objects_dir = self.root / "objects"
        self.tmp_dir = self.root / "tmp"
        self.index_file = self.root / "index.json"
        self.objects_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._index: dict[str, dict[str, Any]] = self._load()
        self._pins: dict[str, int] = {}
        self._clock = max(
            (rec.get("last_used", 0.0) for rec in self._index.values()), default=0.0,
        )

    # ---- 索引持久化 ----

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.index_file.exists():
            return {}
        try:
            data = json.loads(self.index_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("缓存索引损坏，将重建: %s", self.index_file)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if Path(v.get("path", "")).is_file()}

    def _save(self) -> None:
        atomic_write(
            self.index_file,
            json.dumps(self._index, indent=2, ensure_ascii=False, sort_keys=True),
        )

    def _tick(self) -> float:
        # 严格递增，保证同一时刻的多次访问也有确定的 LRU 顺序
        self._clock = max(time.time(), self._clock + 1e-6)
        return self._clock

    def object_path(self, digest: Digest) -> Path:
        return self.objects_dir / digest.algorithm / digest.value

    @staticmethod
    def _to_entry(key: str, rec: dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            digest=Digest.parse(key),
            path=rec["path"],
            size=rec["size"],
            fetched_at=rec["fetched_at"],
            last_used=rec.get("last_used", rec["fetched_at"]),
            filename=rec.get("filename", ""),
            url=rec.get("url", ""),
        )

    # ---- 查询 ----

    def get(self, digest: Digest) -> CacheEntry | None:
        """查询缓存，命中时刷新最近使用时间"""
        with self._lock:
            rec = self._index.get(digest.key)
            if rec is None:
                return None
            if not Path(rec["path"]).is_file():
                logger.warning("缓存文件已丢失，剔除索引: %s", digest)
                del self._index[digest.key]
                self._save()
                return None
            rec["last_used"] = self._tick()
            self._save()
            return self._to_entry(digest.key, rec)

    def contains(self, digest: Digest) -> bool:
        with self._lock:
            rec = self._index.get(digest.key)
            return rec is not None and Path(rec["path"]).is_file()

    def entries(self) -> list[CacheEntry]:
        """按最近使用时间从旧到新列出所有条目"""
        with self._lock:
            items = sorted(self._index.items(), key=lambda kv: kv[1].get("last_used", 0.0))
            return [self._to_entry(k, v) for k, v in items]

    def total_size(self) -> int:
        with self._lock:
            return sum(rec["size"] for rec in self._index.values())

    # ---- 写入 / 删除 ----

    def put(
        self, digest: Digest, src: Path, *, filename: str = "", url: str = "",
    ) -> CacheEntry:
        """把已校验的临时文件移入缓存；同一摘要已存在时丢弃 src 并返回已有条目"""
        with self._lock:
            existing = self._index.get(digest.key)
            if existing is not None and Path(existing["path"]).is_file():
                src.unlink(missing_ok=True)
                existing["last_used"] = self._tick()
                self._save()
                return self._to_entry(digest.key, existing)

            dest = self.object_path(digest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dest)
            now = self._tick()
            rec = {
                "path": str(dest),
                "size": dest.stat().st_size,
                "fetched_at": now,
                "last_used": now,
                "filename": filename,
                "url": url,
            }
            self._index[digest.key] = rec
            if self.max_bytes > 0:
                self._evict_locked(self.max_bytes, keep=digest.key)
            self._save()
            logger.info("已缓存: %s (%d 字节)", digest, rec["size"])
            return self._to_entry(digest.key, rec)

    @contextmanager
    def pinned(self, digest: Digest) -> Iterator[None]:
        """在 with 块内该摘要不参与 LRU 淘汰（条目可以尚未写入）"""
        with self._lock:
            self._pins[digest.key] = self._pins.get(digest.key, 0) + 1
        try:
            yield
        finally:
            with self._lock:
                left = self._pins[digest.key] - 1
                if left:
                    self._pins[digest.key] = left
                else:
                    del self._pins[digest.key]

    def remove(self, digest: Digest) -> bool:
        with self._lock:
            rec = self._index.pop(digest.key, None)
            if rec is None:
                return False
            Path(rec["path"]).unlink(missing_ok=True)
            self._save()
            logger.info("缓存已删除: %s", digest)
            return True

    def prune(self, max_bytes: int | None = None) -> list[CacheEntry]:
        """按 LRU 淘汰直到总大小不超过 max_bytes（默认使用构造参数），返回被淘汰条目"""
        limit = self.max_bytes if max_bytes is None else max_bytes
        if max_bytes is None and limit <= 0:
            return []
        with self._lock:
            removed = self._evict_locked(limit)
            if removed:
                self._save()
            return removed

    def _evict_locked(self, limit: int, keep: str = "") -> list[CacheEntry]:
        total = sum(rec["size"] for rec in self._index.values())
        removed: list[CacheEntry] = []
        for key, rec in sorted(self._index.items(), key=lambda kv: kv[1]["last_used"]):
            if total <= limit:
                break
            if key == keep or key in self._pins:
                continue
            Path(rec["path"]).unlink(missing_ok=True)
            del self._index[key]
            total -= rec["size"]
            removed.append(self._to_entry(key, rec))
            logger.info("LRU 淘汰缓存: %s (%d 字节)", key, rec["size"])
        return removed
