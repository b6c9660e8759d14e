"""Tests for the root test entry points."""

from __future__ import annotations

import io
import logging

import pytest

import stf
from stf.core import Test
from stf.runner import UNSET, run_test
from stf.scheduling import ManualScheduler


class RecordingWriter:
    """Writer stand-in that records calls instead of printing."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def write_test(self, test: Test) -> None:
        self.calls.append(("write_test", test))

    def write_comment(self, data: object) -> None:
        self.calls.append(("write_comment", data))

    def show_progress(self, message: str) -> None:
        self.calls.append(("show_progress", message))


class BrokenWriter(RecordingWriter):
    def write_test(self, test: Test) -> None:
        raise OSError("output closed")


class TestEntryPoint:
    def test_without_body_returns_root(self) -> None:
        scheduler = ManualScheduler()
        root = stf.test("manual", timeout=0, scheduler=scheduler)
        assert isinstance(root, Test)
        assert root.name == "manual"
        root.check(True, "ok")
        root.finish()
        assert root.is_passed() is True

    def test_without_body_needs_no_event_loop(self) -> None:
        root = stf.test("x")
        assert isinstance(root, Test)
        root.check(True, "ok")
        root.finish()
        assert root.is_passed() is True

    def test_with_body_returns_nothing_and_defers(self) -> None:
        scheduler = ManualScheduler()
        ran: list[Test] = []
        result = stf.test("deferred", ran.append, scheduler=scheduler, writer=None)
        assert result is None
        assert ran == []
        scheduler.run_ready()
        assert len(ran) == 1

    def test_writes_results_when_done(self) -> None:
        scheduler = ManualScheduler()
        writer = RecordingWriter()

        def body(t: Test) -> None:
            t.check(True, "ok")
            t.finish()

        stf.test("root", body, scheduler=scheduler, writer=writer)
        scheduler.run_ready()
        assert [name for name, _ in writer.calls] == ["write_test", "write_comment"]
        assert writer.calls[1][1] == "Everything's good!"

    def test_no_trailer_when_failed(self) -> None:
        scheduler = ManualScheduler()
        writer = RecordingWriter()

        def body(t: Test) -> None:
            t.check(False, "bad")
            t.finish()

        stf.test("root", body, scheduler=scheduler, writer=writer)
        scheduler.run_ready()
        assert [name for name, _ in writer.calls] == ["write_test"]

    def test_progress_ticks_until_done(self) -> None:
        scheduler = ManualScheduler()
        output = io.StringIO()
        stf.test(
            "root",
            lambda t: t.call_later(1.2, t.finish),
            scheduler=scheduler,
            output=output,
            progress_interval=0.5,
        )
        scheduler.advance(3.0)
        assert output.getvalue() == (
            "/* Running test: --*/\n"
            "passed -- 0/0: root\n"
            "// Everything's good!\n"
        )
        assert scheduler.pending_timers == 0

    def test_progress_disabled_with_zero_interval(self) -> None:
        scheduler = ManualScheduler()
        writer = RecordingWriter()
        stf.test(
            "root",
            lambda t: t.call_later(2.0, t.finish),
            scheduler=scheduler,
            writer=writer,
            progress_interval=0,
        )
        scheduler.advance(3.0)
        assert all(name != "show_progress" for name, _ in writer.calls)

    def test_rendering_errors_are_logged_not_raised(self, caplog) -> None:
        scheduler = ManualScheduler()
        with caplog.at_level(logging.ERROR, logger="stf.runner"):
            stf.test(
                "root",
                lambda t: t.finish(),
                scheduler=scheduler,
                writer=BrokenWriter(),
                progress_interval=0,
            )
            scheduler.run_ready()
        assert "Failed to write results of test 'root'" in caplog.text

    def test_unset_sentinel_repr(self) -> None:
        assert repr(UNSET) == "UNSET"


class TestRunTest:
    @pytest.mark.asyncio
    async def test_returns_completed_root(self) -> None:
        output = io.StringIO()

        def body(t: Test) -> None:
            t.check(True, "one")
            t.test("two", lambda sub: sub.finish())
            t.finish()

        root = await run_test("tree", body, output=output)
        assert root.is_completed() is True
        assert output.getvalue() == "passed -- 2/2: tree\n// Everything's good!\n"

    @pytest.mark.asyncio
    async def test_writer_none_writes_nothing(self, capsys) -> None:
        root = await run_test("quiet", lambda t: t.finish(), writer=None)
        assert root.is_passed() is True
        assert capsys.readouterr().out == ""

    @pytest.mark.asyncio
    async def test_failed_tree_output(self) -> None:
        output = io.StringIO()

        def body(t: Test) -> None:
            t.check(False, "wrong")
            t.finish()

        root = await run_test("bad", body, output=output)
        assert root.is_passed() is False
        assert output.getvalue() == (
            "failed -- 0/1: bad\n"
            "  // ! 1 test failed, see results.\n"
            "  failed: wrong\n"
        )
