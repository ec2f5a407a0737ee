"""BuildRunner 测试 - 占位符展开、staging 清理、工具链注入、测试命令"""

from __future__ import annotations

from pathlib import Path

import pytest

from recipekit.core.exceptions import BuildError, TestFailure
from recipekit.core.models import Digest, Recipe, Toolchain
from recipekit.services.build.runner import STAGING_DIR_NAME, BuildRunner
from recipekit.utils.shell import CommandResult


def _recipe(install=(), test=()) -> Recipe:
    return Recipe(
        name="tool", url="https://example.com/tool.tar.gz",
        digest=Digest.parse("a" * 64), version="2.1",
        install_commands=tuple(install), test_commands=tuple(test),
    )


class RecordingExecutor:
    """记录调用参数的 fake 执行器"""

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: list[dict] = []

    def execute(self, cmd, *, cwd=".", env=None, timeout=None, cancel=None) -> CommandResult:
        self.calls.append({"cmd": cmd, "cwd": cwd, "env": env, "timeout": timeout})
        return CommandResult(command=" ".join(cmd), returncode=self.returncode,
                             stdout="", stderr="boom" if self.returncode else "")


class TestBuild:
    def test_placeholders_expanded(self, tmp_path: Path) -> None:
        ex = RecordingExecutor()
        runner = BuildRunner(executor=ex, command_timeout=12)
        work = tmp_path / "work"
        work.mkdir()
        result = runner.build(
            _recipe(install=["make PREFIX={prefix} NAME={name}-{version}", ["cp", "x", "{bin}/x"]]),
            tmp_path / "cellar", work,
        )
        prefix = result.staging_path
        assert prefix.parent == tmp_path / "cellar" / STAGING_DIR_NAME
        assert ex.calls[0]["cmd"] == ["make", f"PREFIX={prefix}", "NAME=tool-2.1"]
        assert ex.calls[1]["cmd"] == ["cp", "x", f"{prefix}/bin/x"]
        assert ex.calls[0]["cwd"] == str(work)
        assert ex.calls[0]["timeout"] == 12
        assert len(result.commands) == 2

    def test_toolchain_injected(self, tmp_path: Path) -> None:
        ex = RecordingExecutor()
        BuildRunner(executor=ex).build(
            _recipe(install=["true"]), tmp_path / "cellar", tmp_path,
            toolchain=Toolchain(paths=["/opt/rust/bin"], env={"CARGO_HOME": "/opt/cargo"}),
        )
        env = ex.calls[0]["env"]
        assert env["PATH"].startswith("/opt/rust/bin")
        assert env["CARGO_HOME"] == "/opt/cargo"
        assert env["RECIPEKIT_PREFIX"].startswith(str(tmp_path / "cellar"))

    def test_real_commands_write_staging(self, tmp_path: Path) -> None:
        result = BuildRunner().build(
            _recipe(install=["mkdir -p {bin}", "sh -c 'echo hi > {bin}/hello'"]),
            tmp_path / "cellar", tmp_path,
        )
        assert (result.staging_path / "bin" / "hello").read_text().strip() == "hi"

    def test_failure_removes_staging(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError) as exc:
            BuildRunner().build(
                _recipe(install=["mkdir -p {bin}", "sh -c 'echo bad >&2; exit 7'"]),
                tmp_path / "cellar", tmp_path,
            )
        assert exc.value.returncode == 7
        assert "bad" in exc.value.stderr
        assert exc.value.exit_code == 3
        assert list((tmp_path / "cellar" / STAGING_DIR_NAME).iterdir()) == []

    def test_missing_binary_is_build_error(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError) as exc:
            BuildRunner().build(_recipe(install=["no-such-tool-xyz"]), tmp_path / "cellar", tmp_path)
        assert exc.value.returncode == 127

    def test_timeout_is_build_error(self, tmp_path: Path) -> None:
        with pytest.raises(BuildError, match="超时"):
            BuildRunner(command_timeout=0.3).build(
                _recipe(install=["sleep 5"]), tmp_path / "cellar", tmp_path,
            )


class TestTest:
    def test_no_test_commands(self, tmp_path: Path) -> None:
        assert BuildRunner().test(_recipe(), tmp_path) == []

    def test_runs_against_prefix(self, tmp_path: Path) -> None:
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "marker").write_text("x")
        results = BuildRunner().test(_recipe(test=["test -f {bin}/marker"]), tmp_path)
        assert len(results) == 1

    def test_failure(self, tmp_path: Path) -> None:
        with pytest.raises(TestFailure) as exc:
            BuildRunner(executor=RecordingExecutor(returncode=1)).test(
                _recipe(test=["tool -V"]), tmp_path,
            )
        assert exc.value.exit_code == 4
        assert not isinstance(exc.value, BuildError)
