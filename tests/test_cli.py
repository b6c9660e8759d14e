"""Tests for the stf command line."""

from __future__ import annotations

import textwrap
import uuid
from pathlib import Path

import pytest
from click.testing import CliRunner

from stf.cli import load_target, main
from stf.errors import TargetError


@pytest.fixture()
def bodies(tmp_path: Path, monkeypatch) -> str:
    """Write an importable module of test bodies and return its name."""
    name = f"stf_bodies_{uuid.uuid4().hex}"
    (tmp_path / f"{name}.py").write_text(
        textwrap.dedent(
            """
            import asyncio

            def passing(t):
                t.check(True, "works")
                t.finish()

            def failing(t):
                t.check(False, "broken")
                t.finish()

            async def slow(t):
                await asyncio.sleep(0.01)
                t.check(True, "slept")
                t.finish()

            def idle(t):
                pass

            class Suite:
                @staticmethod
                def body(t):
                    t.finish()

            NOT_CALLABLE = 42
            """
        )
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    return name


class TestLoadTarget:
    def test_loads_function(self) -> None:
        import os.path

        assert load_target("os.path:join") is os.path.join

    def test_loads_dotted_attribute(self, bodies: str) -> None:
        assert callable(load_target(f"{bodies}:Suite.body"))

    @pytest.mark.parametrize("target", ["no_colon", ":func", "module:"])
    def test_malformed(self, target: str) -> None:
        with pytest.raises(TargetError, match="module:function"):
            load_target(target)

    def test_missing_module(self) -> None:
        with pytest.raises(TargetError, match="Cannot import"):
            load_target("definitely_not_a_module_xyz:body")

    def test_missing_attribute(self, bodies: str) -> None:
        with pytest.raises(TargetError, match="no attribute"):
            load_target(f"{bodies}:missing")

    def test_not_callable(self, bodies: str) -> None:
        with pytest.raises(TargetError, match="not callable") as info:
            load_target(f"{bodies}:NOT_CALLABLE")
        assert info.value.target == f"{bodies}:NOT_CALLABLE"


class TestRunCommand:
    def test_passing_body(self, bodies: str) -> None:
        result = CliRunner().invoke(main, ["run", f"{bodies}:passing", "--name", "smoke"])
        assert result.exit_code == 0, result.output
        assert "passed -- 1/1: smoke" in result.output
        assert "Everything's good!" in result.output

    def test_async_body(self, bodies: str) -> None:
        result = CliRunner().invoke(main, ["run", f"{bodies}:slow"])
        assert result.exit_code == 0, result.output
        assert f"passed -- 1/1: {bodies}:slow" in result.output

    def test_failing_body(self, bodies: str) -> None:
        result = CliRunner().invoke(main, ["run", f"{bodies}:failing"])
        assert result.exit_code == 1
        assert "failed: broken" in result.output

    def test_timeout_option(self, bodies: str) -> None:
        result = CliRunner().invoke(main, ["run", f"{bodies}:idle", "--timeout", "0.05"])
        assert result.exit_code == 1
        assert "Test timed out due to no activity in 0.05 seconds." in result.output

    def test_timeout_from_environment(self, bodies: str) -> None:
        result = CliRunner().invoke(
            main, ["run", f"{bodies}:idle"], env={"STF_TIMEOUT": "0.05"}
        )
        assert result.exit_code == 1
        assert "timed out" in result.output

    def test_quiet(self, bodies: str) -> None:
        result = CliRunner().invoke(main, ["run", f"{bodies}:passing", "--quiet"])
        assert result.exit_code == 0
        assert "passed --" not in result.output

    def test_bad_target(self) -> None:
        result = CliRunner().invoke(main, ["run", "not-a-target"])
        assert result.exit_code == 2

    def test_invalid_environment(self, bodies: str) -> None:
        result = CliRunner().invoke(
            main, ["run", f"{bodies}:passing"], env={"STF_TIMEOUT": "never"}
        )
        assert result.exit_code == 2

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output
