"""摘要计算与校验测试"""

from __future__ import annotations

import hashlib
from pathlib import Path

from recipekit.core.fetch.verifier import compute_digest, verify
from recipekit.core.models import Digest


class TestVerifier:
    def test_compute_matches_hashlib(self, tmp_path: Path) -> None:
        p = tmp_path / "f.bin"
        p.write_bytes(b"hello" * 100000)
        d = compute_digest(p)
        assert d == Digest("sha256", hashlib.sha256(b"hello" * 100000).hexdigest())

    def test_verify_match_and_mismatch(self, tmp_path: Path) -> None:
        p = tmp_path / "f.bin"
        p.write_bytes(b"abc")
        good = Digest.parse(hashlib.sha256(b"abc").hexdigest())
        bad = Digest.parse(hashlib.sha256(b"abd").hexdigest())
        assert verify(p, good)
        assert not verify(p, bad)

    def test_verify_other_algorithm(self, tmp_path: Path) -> None:
        p = tmp_path / "f.bin"
        p.write_bytes(b"abc")
        assert verify(p, Digest("sha512", hashlib.sha512(b"abc").hexdigest()))

    def test_missing_file_is_mismatch(self, tmp_path: Path) -> None:
        assert not verify(tmp_path / "nope", Digest.parse("a" * 64))
