"""内容寻址缓存测试 - 写入一次、LRU 淘汰、索引持久化"""

from __future__ import annotations

import hashlib
from pathlib import Path

from recipekit.core.fetch.cache import ContentCache
from recipekit.core.models import Digest


def _blob(tmp_path: Path, content: bytes) -> tuple[Path, Digest]:
    src = tmp_path / f"src-{hashlib.md5(content).hexdigest()}"  # noqa: S324
    src.write_bytes(content)
    return src, Digest.parse(hashlib.sha256(content).hexdigest())


class TestPutGet:
    def test_miss(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        assert cache.get(Digest.parse("a" * 64)) is None

    def test_put_then_get(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        src, digest = _blob(tmp_path, b"payload")
        entry = cache.put(digest, src, filename="x.tar.gz", url="https://e/x.tar.gz")
        assert not src.exists()
        assert Path(entry.path) == tmp_path / "cache" / "objects" / "sha256" / digest.value
        assert entry.size == len(b"payload")
        got = cache.get(digest)
        assert got is not None
        assert got.filename == "x.tar.gz"
        assert Path(got.path).read_bytes() == b"payload"

    def test_written_at_most_once(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        src, digest = _blob(tmp_path, b"payload")
        first = cache.put(digest, src)
        again = tmp_path / "again"
        again.write_bytes(b"payload")
        second = cache.put(digest, again)
        assert second.path == first.path
        assert second.fetched_at == first.fetched_at
        assert not again.exists()

    def test_index_persisted(self, tmp_path: Path) -> None:
        src, digest = _blob(tmp_path, b"payload")
        ContentCache(tmp_path / "cache").put(digest, src)
        reopened = ContentCache(tmp_path / "cache")
        assert reopened.contains(digest)
        assert reopened.total_size() == len(b"payload")

    def test_lost_file_dropped_from_index(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        src, digest = _blob(tmp_path, b"payload")
        entry = cache.put(digest, src)
        Path(entry.path).unlink()
        assert cache.get(digest) is None
        assert cache.entries() == []

    def test_remove(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        src, digest = _blob(tmp_path, b"payload")
        entry = cache.put(digest, src)
        assert cache.remove(digest)
        assert not Path(entry.path).exists()
        assert not cache.remove(digest)


class TestLru:
    def test_evicts_least_recently_used(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache", max_bytes=25)
        a_src, a = _blob(tmp_path, b"a" * 10)
        b_src, b = _blob(tmp_path, b"b" * 10)
        c_src, c = _blob(tmp_path, b"c" * 10)
        cache.put(a, a_src)
        cache.put(b, b_src)
        cache.get(a)  # a 变为最近使用
        cache.put(c, c_src)
        assert cache.contains(a)
        assert not cache.contains(b)
        assert cache.contains(c)
        assert cache.total_size() <= 25

    def test_new_entry_kept_even_if_oversized(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache", max_bytes=5)
        src, digest = _blob(tmp_path, b"x" * 10)
        cache.put(digest, src)
        assert cache.contains(digest)

    def test_entries_oldest_first(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        a_src, a = _blob(tmp_path, b"a")
        b_src, b = _blob(tmp_path, b"b")
        cache.put(a, a_src)
        cache.put(b, b_src)
        cache.get(a)
        assert [e.digest for e in cache.entries()] == [b, a]

    def test_prune(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        a_src, a = _blob(tmp_path, b"a" * 10)
        b_src, b = _blob(tmp_path, b"b" * 10)
        cache.put(a, a_src)
        cache.put(b, b_src)
        assert cache.prune() == []  # 无上限时不淘汰
        removed = cache.prune(max_bytes=10)
        assert [e.digest for e in removed] == [a]
        assert cache.prune(max_bytes=0)
        assert cache.entries() == []


class TestPinned:
    def test_pinned_entry_survives_eviction(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache", max_bytes=15)
        a_src, a = _blob(tmp_path, b"a" * 10)
        b_src, b = _blob(tmp_path, b"b" * 10)
        with cache.pinned(a):
            cache.put(a, a_src)
            cache.put(b, b_src)
            assert cache.contains(a)
            assert cache.contains(b)
        # 解除固定后恢复正常淘汰
        assert [e.digest for e in cache.prune()] == [a]

    def test_nested_pins(self, tmp_path: Path) -> None:
        cache = ContentCache(tmp_path / "cache")
        src, digest = _blob(tmp_path, b"payload")
        cache.put(digest, src)
        with cache.pinned(digest):
            with cache.pinned(digest):
                assert cache.prune(max_bytes=0) == []
            assert cache.prune(max_bytes=0) == []
        assert len(cache.prune(max_bytes=0)) == 1
