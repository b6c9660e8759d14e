"""Entry points that wire a root test to a result writer.

:func:`test` mirrors :meth:`stf.core.Test.test` for a root test: with a
body it runs asynchronously and prints the results when done; without one
it returns the root test for the caller to drive.  :func:`run_test` is the
awaitable form, which returns the root test once it has completed.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from typing import Any, Callable, TextIO

from stf.config import DEFAULT_PROGRESS_INTERVAL
from stf.core import Body, Test
from stf.scheduling import Scheduler, TimerHandle
from stf.writer import ResultWriter

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


#: Default for ``writer``: build a :class:`ResultWriter` on ``output``.
UNSET: Any = _Unset()


class _Progress:
    """Repeating progress indicator on a writer, until stopped."""

    def __init__(self, scheduler: Scheduler, writer: Any, interval: float) -> None:
        self._scheduler = scheduler
        self._writer = writer
        self._interval = interval
        self._handle: TimerHandle | None = None
        self._stopped = False

    def start(self) -> None:
        if self._interval > 0:
            self._arm()

    def _arm(self) -> None:
        self._handle = self._scheduler.call_later(
            self._interval, self._tick, context=contextvars.Context()
        )

    def _tick(self) -> None:
        if self._stopped:
            return
        try:
            self._writer.show_progress("Running test:")
        except Exception:
            logger.exception("Progress indicator failed")
            return
        self._arm()

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def _launch(
    name: str,
    body: Body,
    *,
    timeout: float | None,
    output: TextIO | None,
    writer: Any,
    scheduler: Scheduler | None,
    progress_interval: float,
    on_complete: Callable[[Test], None] | None = None,
) -> Test:
    if writer is UNSET:
        writer = ResultWriter(output)

    progress: _Progress | None = None
    root: Test

    def done(reason: Any, passed: bool) -> None:
        if progress is not None:
            progress.stop()
        if writer is not None:
            # Rendering errors would otherwise surface as faults of a test
            # that has already finished, and never be seen.
            try:
                writer.write_test(root)
                if root.is_passed():
                    writer.write_comment("Everything's good!")
            except Exception:
                logger.exception("Failed to write results of test '%s'", root.name)
        if on_complete is not None:
            on_complete(root)

    root = Test(name, timeout, done, scheduler=scheduler)
    root.run(body)
    if writer is not None:
        progress = _Progress(root.scheduler, writer, progress_interval)
        progress.start()
    return root


def test(
    name: str,
    body: Body | None = None,
    *,
    timeout: float | None = None,
    output: TextIO | None = None,
    writer: Any = UNSET,
    scheduler: Scheduler | None = None,
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
) -> Test | None:
    """Create a root test.

    With a *body*, the body runs asynchronously against a new root test,
    a progress indicator ticks while it runs, and the results are written
    once the root test completes.  Nothing is returned.  With the default
    scheduler this must be called while an event loop is running, for
    example from a coroutine passed to :func:`asyncio.run`.

    Without a *body*, the root test is returned for the caller to drive
    and inspect; no writer is involved.  This works without an event
    loop; the inactivity timeout is only armed once one is running.

    Args:
        name: Name of the root test.
        body: Optional callable (sync or ``async def``) taking the test.
        timeout: Inactivity timeout of the root test in seconds.
        output: Stream for the default writer; ``sys.stdout`` if omitted.
        writer: Result writer.  Left unset, a :class:`ResultWriter` on
            *output* is used.  ``None`` disables output entirely.
        scheduler: Scheduler for the test tree; defaults to the running
            asyncio loop.
        progress_interval: Seconds between progress ticks.
    """
    if body is None:
        return Test(name, timeout, scheduler=scheduler)
    _launch(
        name,
        body,
        timeout=timeout,
        output=output,
        writer=writer,
        scheduler=scheduler,
        progress_interval=progress_interval,
    )
    return None


async def run_test(
    name: str,
    body: Body,
    *,
    timeout: float | None = None,
    output: TextIO | None = None,
    writer: Any = UNSET,
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
) -> Test:
    """Run *body* as a root test and wait for the tree to complete.

    Takes the same options as :func:`test` and uses the running loop.
    Note that a root test with no timeout whose body never finishes it
    never completes.

    Returns:
        The completed root test.
    """
    loop = asyncio.get_running_loop()
    completed: asyncio.Future[Test] = loop.create_future()

    def on_complete(root: Test) -> None:
        if not completed.done():
            completed.set_result(root)

    _launch(
        name,
        body,
        timeout=timeout,
        output=output,
        writer=writer,
        scheduler=None,
        progress_interval=progress_interval,
        on_complete=on_complete,
    )
    return await completed
