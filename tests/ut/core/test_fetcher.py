"""Fetcher 测试 - 缓存优先、完整性校验、重试、并发合并、取消"""

from __future__ import annotations

import hashlib
import threading
import time
from pathlib import Path

import pytest

from recipekit.core.exceptions import Cancelled, FetchError, IntegrityError
from recipekit.core.fetch.cache import ContentCache
from recipekit.core.fetch.fetcher import Fetcher
from recipekit.core.models import Digest
from recipekit.utils.cancel import CancelToken

URL = "https://example.com/pkg-1.0.tar.gz"
CONTENT = b"source tarball bytes"
DIGEST = Digest.parse(hashlib.sha256(CONTENT).hexdigest())


class FakeTransport:
    """计数 + 故障注入的传输层"""

    def __init__(self, content: bytes = CONTENT, failures: int = 0,
                 gate: threading.Event | None = None) -> None:
        self.content = content
        self.failures = failures
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def download(self, url: str, dest: Path, *, cancel=None) -> None:
        with self._lock:
            self.calls += 1
            fail = self.calls <= self.failures
        if self.gate is not None:
            self.gate.wait(5)
        if fail:
            raise FetchError("connection reset", url=url)
        dest.write_bytes(self.content)


def _fetcher(tmp_path: Path, transport: FakeTransport, retries: int = 3) -> Fetcher:
    cache = ContentCache(tmp_path / "cache")
    return Fetcher(cache, transport, retries=retries, backoff=0)


class TestCacheFirst:
    def test_second_fetch_uses_cache(self, tmp_path: Path) -> None:
        transport = FakeTransport()
        fetcher = _fetcher(tmp_path, transport)
        first = fetcher.fetch(URL, DIGEST)
        second = fetcher.fetch(URL, DIGEST)
        assert transport.calls == 1
        assert first.path == second.path
        assert second.filename == "pkg-1.0.tar.gz"

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        fetcher = _fetcher(tmp_path, FakeTransport())
        fetcher.fetch(URL, DIGEST)
        assert list((tmp_path / "cache" / "tmp").iterdir()) == []


class TestIntegrity:
    def test_mismatch_raises_and_caches_nothing(self, tmp_path: Path) -> None:
        transport = FakeTransport(content=b"tampered")
        fetcher = _fetcher(tmp_path, transport)
        with pytest.raises(IntegrityError) as exc:
            fetcher.fetch(URL, DIGEST)
        assert exc.value.expected == DIGEST.key
        assert exc.value.actual == "sha256:" + hashlib.sha256(b"tampered").hexdigest()
        assert fetcher.cache.entries() == []
        assert list((tmp_path / "cache" / "tmp").iterdir()) == []

    def test_mismatch_not_retried(self, tmp_path: Path) -> None:
        transport = FakeTransport(content=b"tampered")
        fetcher = _fetcher(tmp_path, transport, retries=5)
        with pytest.raises(IntegrityError):
            fetcher.fetch(URL, DIGEST)
        assert transport.calls == 1


class TestRetry:
    def test_transient_failures_retried(self, tmp_path: Path) -> None:
        transport = FakeTransport(failures=2)
        entry = _fetcher(tmp_path, transport, retries=3).fetch(URL, DIGEST)
        assert transport.calls == 3
        assert Path(entry.path).read_bytes() == CONTENT

    def test_exhausted_raises_last_error(self, tmp_path: Path) -> None:
        transport = FakeTransport(failures=10)
        with pytest.raises(FetchError, match="connection reset"):
            _fetcher(tmp_path, transport, retries=3).fetch(URL, DIGEST)
        assert transport.calls == 3

    def test_exponential_backoff(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        delays: list[float] = []
        monkeypatch.setattr(Fetcher, "_sleep", staticmethod(lambda d, c: delays.append(d)))
        cache = ContentCache(tmp_path / "cache")
        fetcher = Fetcher(cache, FakeTransport(failures=3), retries=4, backoff=0.5)
        fetcher.fetch(URL, DIGEST)
        assert delays == [0.5, 1.0, 2.0]


class TestCoalescing:
    def test_concurrent_same_digest_single_download(self, tmp_path: Path) -> None:
        gate = threading.Event()
        transport = FakeTransport(gate=gate)
        fetcher = _fetcher(tmp_path, transport)
        results: list = []
        errors: list = []

        def worker() -> None:
            try:
                results.append(fetcher.fetch(URL, DIGEST))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        time.sleep(0.3)  # 让所有线程进入等待
        gate.set()
        for t in threads:
            t.join(10)
        assert errors == []
        assert transport.calls == 1
        assert len({r.path for r in results}) == 1
        assert len(results) == 5

    def test_waiters_share_failure(self, tmp_path: Path) -> None:
        gate = threading.Event()
        transport = FakeTransport(content=b"tampered", gate=gate)
        fetcher = _fetcher(tmp_path, transport)
        errors: list = []

        def worker() -> None:
            try:
                fetcher.fetch(URL, DIGEST)
            except IntegrityError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        time.sleep(0.3)  # 让所有线程进入等待
        gate.set()
        for t in threads:
            t.join(10)
        assert len(errors) == 3
        assert transport.calls == 1

    def test_waiters_get_independent_errors(self, tmp_path: Path) -> None:
        gate = threading.Event()
        transport = FakeTransport(content=b"tampered", gate=gate)
        fetcher = _fetcher(tmp_path, transport)
        errors: list = []

        def worker(recipe: str) -> None:
            try:
                fetcher.fetch(URL, DIGEST)
            except IntegrityError as e:
                errors.append(e.annotate(recipe, "fetching"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b", "c")]
        for t in threads:
            t.start()
        time.sleep(0.3)  # 让所有线程进入等待
        gate.set()
        for t in threads:
            t.join(10)
        assert len({id(e) for e in errors}) == 3
        assert sorted(e.recipe for e in errors) == ["a", "b", "c"]
        assert all(e.expected == DIGEST.key for e in errors)


class TestCancel:
    def test_cancelled_before_download(self, tmp_path: Path) -> None:
        transport = FakeTransport()
        token = CancelToken()
        token.cancel()
        with pytest.raises(Cancelled):
            _fetcher(tmp_path, transport).fetch(URL, DIGEST, cancel=token)
        assert transport.calls == 0

    def test_backoff_wait_interrupted(self, tmp_path: Path) -> None:
        token = CancelToken()

        class CancellingTransport(FakeTransport):
            def download(self, url, dest, *, cancel=None):  # type: ignore[override]
                token.cancel("测试取消")
                raise FetchError("down", url=url)

        cache = ContentCache(tmp_path / "cache")
        fetcher = Fetcher(cache, CancellingTransport(), retries=3, backoff=60)
        with pytest.raises(Cancelled):
            fetcher.fetch(URL, DIGEST, cancel=token)


class TestHead:
    class FlakyGit:
        """第一次克隆留下不完整目录后失败"""

        def __init__(self) -> None:
            self.calls = 0

        def clone(self, url: str, dest: Path, *, cancel=None) -> str:
            self.calls += 1
            dest.mkdir(parents=True)
            if self.calls == 1:
                (dest / ".git").mkdir()
                raise FetchError("git clone 超时", url=url)
            (dest / "README").write_text("ok", encoding="utf-8")
            return "0123456789abcdef"

    def test_retry_starts_from_clean_dest(self, tmp_path: Path) -> None:
        git = self.FlakyGit()
        fetcher = Fetcher(ContentCache(tmp_path / "cache"), FakeTransport(),
                          retries=3, backoff=0, git=git)
        dest = tmp_path / "work" / "src"
        commit = fetcher.fetch_head("https://example.com/pkg.git", dest)
        assert commit == "0123456789abcdef"
        assert git.calls == 2
        assert sorted(p.name for p in dest.iterdir()) == ["README"]
