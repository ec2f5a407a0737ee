"""核心数据模型测试 - 摘要解析、配方校验、状态机"""

from __future__ import annotations

import pytest

from recipekit.core.exceptions import ValidationError
from recipekit.core.models import (
    TRANSITIONS,
    Digest,
    InstallState,
    Recipe,
    can_transition,
)

HEX = "56f351200bfddf72136aaf5051cd97ab04e0c42810ef312dbbd809125c4798ec"


def _recipe(**overrides) -> Recipe:
    fields = {
        "name": "loop",
        "url": "https://example.com/loop.zip",
        "digest": Digest.parse(HEX),
        "version": "0.3.3",
    }
    fields.update(overrides)
    return Recipe(**fields)


class TestDigest:
    def test_bare_hex_is_sha256(self) -> None:
        d = Digest.parse(HEX)
        assert d.algorithm == "sha256"
        assert d.key == f"sha256:{HEX}"

    def test_prefixed_and_normalized(self) -> None:
        d = Digest.parse(f" SHA256:{HEX.upper()} ")
        assert str(d) == f"sha256:{HEX}"

    def test_other_algorithm(self) -> None:
        assert Digest.parse("sha1:" + "a" * 40).algorithm == "sha1"

    @pytest.mark.parametrize("text", ["", "sha256:", "sha256:xyz", "nope:abcd"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValidationError):
            Digest.parse(text)


class TestRecipe:
    def test_frozen(self) -> None:
        r = _recipe()
        with pytest.raises(AttributeError):
            r.version = "1.0"  # type: ignore[misc]

    @pytest.mark.parametrize("overrides", [
        {"name": "../evil"},
        {"name": ""},
        {"version": ""},
        {"url": ""},
        {"build_dependencies": ("loop",)},
    ])
    def test_invalid_fields(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            _recipe(**overrides)

    def test_fingerprint_stable(self) -> None:
        assert _recipe().fingerprint() == _recipe().fingerprint()

    def test_fingerprint_changes_with_definition(self) -> None:
        base = _recipe().fingerprint()
        assert _recipe(install_commands=("make",)).fingerprint() != base
        assert _recipe(version="0.3.4").fingerprint() != base

    def test_to_dict(self) -> None:
        d = _recipe(install_commands=(("cargo", "install"),), test_commands=("loop -V",)).to_dict()
        assert d["digest"] == f"sha256:{HEX}"
        assert d["install"] == ["cargo install"]
        assert d["test"] == ["loop -V"]


class TestStateMachine:
    def test_happy_path(self) -> None:
        path = [
            InstallState.PENDING, InstallState.FETCHING, InstallState.VERIFYING,
            InstallState.RESOLVING_DEPS, InstallState.BUILDING, InstallState.TESTING,
            InstallState.INSTALLED,
        ]
        assert can_transition(None, path[0])
        for src, dst in zip(path, path[1:]):
            assert can_transition(src, dst)

    def test_must_start_pending(self) -> None:
        assert not can_transition(None, InstallState.BUILDING)

    def test_no_skipping_stages(self) -> None:
        assert not can_transition(InstallState.FETCHING, InstallState.BUILDING)
        assert not can_transition(InstallState.PENDING, InstallState.INSTALLED)

    def test_every_active_state_can_fail(self) -> None:
        active = [
            InstallState.PENDING, InstallState.FETCHING, InstallState.VERIFYING,
            InstallState.RESOLVING_DEPS, InstallState.BUILDING, InstallState.TESTING,
        ]
        for s in active:
            assert InstallState.FAILED in TRANSITIONS[s]

    def test_rollback_only_from_terminal(self) -> None:
        assert can_transition(InstallState.FAILED, InstallState.ROLLED_BACK)
        assert can_transition(InstallState.INSTALLED, InstallState.ROLLED_BACK)
        assert not can_transition(InstallState.BUILDING, InstallState.ROLLED_BACK)
