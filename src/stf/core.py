"""Test lifecycle and result tree engine.

A :class:`Test` is one node of the result tree.  It collects checkpoints,
annotations and subtests, and resolves exactly once to finished (by an
explicit :meth:`Test.finish`, an inactivity timeout, or an uncaught
exception in its body).  Completion travels bottom-up: a child reports
to its parent through the one-shot ``on_done`` callback it was built
with, and a parent only reports once it is itself finished and no
subtests remain pending.

Misuse (adding results to a finished test, finishing twice) never raises;
it is recorded as an error annotation on the same test.
"""

from __future__ import annotations

import contextvars
import logging
from typing import Any, Awaitable, Callable

from stf.faults import FaultScope, current_scope
from stf.models import Annotation, AnnotationKind, Checkpoint, FinishReason
from stf.scheduling import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# Seconds of inactivity after which a test times out.
DEFAULT_TIMEOUT = 5.0

DoneCallback = Callable[[Any, bool], None]
Body = Callable[["Test"], Any]


class Test:
    """A test and its collected results.

    There is rarely a reason to build one directly: use
    :func:`stf.test` for a root test and :meth:`Test.test` for subtests.

    Attributes:
        name: Name of the test; not required to be unique.
        contents: Subtests, checkpoints and annotations in the order
            they were added.
        passed: Subtests and checkpoints that passed.
        failed: Subtests and checkpoints that failed.
        total: Subtests and checkpoints started, resolved or not.
        pending: Subtests started but not yet resolved.
        expected: Number of subtests and checkpoints to expect, set by
            :meth:`finish_after` or :meth:`add_expected`.
        errors: Number of error annotations added.
        finished: Whether the test has been marked finished.
        finish_reason: ``None`` for a normal finish, otherwise the
            reason given (``"bail"``, ``"timeout"`` or a caller value).
        timeout: Seconds of inactivity before the test times out.
            Zero or negative disables the timeout.  Changes take effect
            at the next :meth:`ping`.
    """

    # Not a pytest test class, despite the name.
    __test__ = False

    def __init__(
        self,
        name: str,
        timeout: float | None = DEFAULT_TIMEOUT,
        on_done: DoneCallback | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.name = name
        self.contents: list[Test | Checkpoint | Annotation] = []
        self.passed = 0
        self.failed = 0
        self.expected: int | None = None
        self.total = 0
        self.pending = 0
        self.finished = False
        self.finish_reason: Any = None
        self.errors = 0
        self.timeout = DEFAULT_TIMEOUT if timeout is None else timeout

        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._on_done = on_done
        self._timer: TimerHandle | None = None
        self._cleanup: list[Callable[[], Any]] = []
        self._scopes: list[FaultScope] = []
        self._notified = False
        # Bound once and shared by every subtest of this test.
        self._subtest_finished: DoneCallback = self._on_subtest_finished

        self.ping()

    def __repr__(self) -> str:
        return (
            f"Test(name={self.name!r}, passed={self.passed}, failed={self.failed}, "
            f"total={self.total}, pending={self.pending}, finished={self.finished})"
        )

    @property
    def scheduler(self) -> Scheduler:
        """The scheduler driving this test and its subtests."""
        return self._scheduler

    # ------------------------------------------------------------------
    # Timeout management
    # ------------------------------------------------------------------

    def ping(self) -> None:
        """Signal activity, restarting the inactivity timeout.

        Called automatically by every method that adds results.  Once the
        test is finished the timer is cancelled and never re-armed.

        With the default scheduler and no running event loop there is
        nothing to arm a timer on, so the test is left without one; the
        first ping made once a loop is running arms it.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.finished and self.timeout > 0:
            try:
                # Engine timers belong to no body's fault scope.
                self._timer = self._scheduler.call_later(
                    self.timeout, self._on_timeout, context=contextvars.Context()
                )
            except RuntimeError:
                logger.debug("No running event loop, timeout of test '%s' not armed", self.name)

    def _on_timeout(self) -> None:
        self._timer = None
        logger.debug("Test '%s' timed out after %s seconds", self.name, self.timeout)
        self.finish(FinishReason.TIMEOUT)

    # ------------------------------------------------------------------
    # Body execution
    # ------------------------------------------------------------------

    def run(self, body: Body) -> None:
        """Run *body* with this test as its only argument, on a later turn.

        The body runs inside a fault boundary: an exception raised by it,
        by an awaitable it returns (an ``async def`` body), or by work it
        schedules through :meth:`spawn`, :meth:`call_soon`,
        :meth:`call_later` or directly on the event loop is recorded as
        an error and the test bails.  A fault arriving after the test is
        finished is still recorded on this test, next to an error noting
        the extra attempt to finish it.  With the default scheduler a
        running event loop is required.

        Calling this more than once is allowed; there is no ordering
        guarantee between bodies.
        """
        scope = FaultScope(self._scheduler, self._bail)
        self._scopes.append(scope)
        self._scheduler.watch_faults()
        scope.call_soon(body, self)

    def _bail(self, exc: BaseException) -> None:
        # The error goes in first so it is counted before any notification.
        self.error(exc)
        self.finish(FinishReason.BAIL)

    def _scope(self) -> FaultScope | None:
        if self._scopes:
            return self._scopes[-1]
        return current_scope()

    def spawn(self, awaitable: Awaitable[Any]) -> Any:
        """Run *awaitable* as a task whose failure bails this test."""
        scope = self._scope()
        if scope is None:
            return self._scheduler.spawn(awaitable)
        return scope.spawn(awaitable)

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule *fn* on a later turn inside this test's fault boundary."""
        scope = self._scope()
        if scope is None:
            return self._scheduler.call_soon(fn, *args)
        return scope.call_soon(fn, *args)

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule *fn* after *delay* seconds inside this test's fault boundary."""
        scope = self._scope()
        if scope is None:
            return self._scheduler.call_later(delay, fn, *args)
        return scope.call_later(delay, fn, *args)

    # ------------------------------------------------------------------
    # Subtests
    # ------------------------------------------------------------------

    def test(
        self,
        name: str,
        body: Body | None = None,
        timeout: float | None = None,
    ) -> Test | None:
        """Start a subtest.

        With a *body*, the body is run asynchronously (see :meth:`run`)
        and nothing is returned.  Without one, the subtest is returned
        for the caller to drive directly; exceptions raised by that
        caller are then not captured by the subtest.

        Args:
            name: Name of the subtest.
            body: Optional callable taking the subtest.
            timeout: Inactivity timeout in seconds for the subtest.

        Returns:
            The subtest when no body is given, otherwise ``None``.  Also
            ``None`` if this test is already finished, in which case an
            error is recorded instead.
        """
        if self.finished:
            self.error(f"Subtest '{name}' triggered after test was completed")
            return None
        self.ping()

        child = Test(name, timeout, self._subtest_finished, scheduler=self._scheduler)
        self.contents.append(child)
        self.pending += 1
        # Counted now; resolved later by _on_subtest_finished.
        self.total += 1
        self._check_finish_after()

        if body is not None:
            child.run(body)
            return None
        return child

    def _on_subtest_finished(self, reason: Any, passed: bool) -> None:
        if not reason and passed:
            self.passed += 1
        else:
            self.failed += 1
        self.pending -= 1
        if self.is_completed():
            self._run_cleanup()

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def check(self, result: Any, name: str) -> bool | None:
        """Record a checkpoint.

        *result* is coerced to a boolean.  A callable is invoked with no
        arguments instead: it passes if it returns and fails if it raises,
        in which case the exception is also recorded as an error.

        The return value lets ``check`` guard follow-up diagnostics::

            if not t.check(value == 3, "value is three"):
                t.error(f"value was {value!r}")

        Returns:
            Whether the checkpoint passed, or ``None`` if the test is
            already finished (an error is recorded instead).
        """
        if self.finished:
            self.error(f"Checkpoint '{name}' triggered after test was completed")
            return None
        self.ping()

        caught: Exception | None = None
        if callable(result):
            try:
                result()
                passed = True
            except Exception as exc:
                caught = exc
                passed = False
        else:
            passed = bool(result)

        self.contents.append(Checkpoint(name, passed))
        if passed:
            self.passed += 1
        else:
            self.failed += 1
        self.total += 1
        if caught is not None:
            self.error(caught)
        self._check_finish_after()
        return passed

    def catch(self, fn: Callable[[], Any], name: str) -> bool | None:
        """Record a checkpoint that passes if *fn* runs without raising.

        *fn* must be synchronous; use a subtest for asynchronous code.
        """
        return self.check(fn, name)

    # ------------------------------------------------------------------
    # Expected count
    # ------------------------------------------------------------------

    def finish_after(self, count: int) -> None:
        """Finish automatically once *count* subtests and checkpoints exist.

        Lowering the count to or below :attr:`total` finishes the test
        immediately.  If fewer results than expected exist when the test
        finishes, it does not pass.
        """
        if self.finished:
            self.error(f"Expected test count set to {count} after completion.")
            return
        self.ping()
        self.expected = count
        self._check_finish_after()

    def add_expected(self, delta: int) -> None:
        """Increase (or with a negative *delta*, decrease) :attr:`expected`."""
        if self.finished:
            self.error(f"Expected test count increased by {delta} after completion.")
            return
        self.ping()
        self.expected = (self.expected or 0) + delta
        self._check_finish_after()

    def _check_finish_after(self) -> None:
        if self.expected is not None and self.expected <= self.total:
            self.finish()

    # ------------------------------------------------------------------
    # Finish and completion
    # ------------------------------------------------------------------

    def finish(self, reason: Any = None) -> None:
        """Mark the test finished.

        Without a *reason* the test ended normally.  Any truthy reason
        marks an abnormal end; the engine itself uses ``"bail"`` for an
        uncaught exception and ``"timeout"`` for inactivity.

        The parent is notified right away when no subtests are pending,
        otherwise when the last pending subtest resolves.
        """
        if self.finished:
            self.error(
                "An extra attempt was made to finish the test, "
                f"the reason this time was: '{reason}'"
            )
            return
        self.finished = True
        # Cancels the timer for good now that finished is set.
        self.ping()
        self.finish_reason = reason

        if reason:
            if reason == FinishReason.BAIL:
                self.error("Test bailed due to an uncaught exception.")
            elif reason == FinishReason.TIMEOUT:
                self.error(f"Test timed out due to no activity in {self.timeout} seconds.")
            else:
                self.error(f"Test finished abnormally, reason given was '{reason}'")

        logger.debug("Test '%s' finished (reason=%r)", self.name, reason)
        if self.is_completed():
            self._run_cleanup()

    def is_completed(self) -> bool:
        """Finished, nothing pending, and no more results than expected."""
        return (
            self.finished
            and self.pending == 0
            and (self.expected is None or self.expected >= self.total)
        )

    def is_passed(self) -> bool:
        """Completed normally with no failures, no errors and every
        expected result seen."""
        return (
            self.is_completed()
            and not self.finish_reason
            and self.failed == 0
            and self.errors == 0
            and (self.expected is None or self.expected == self.total)
        )

    def cleanup(self, fn: Callable[[], Any]) -> None:
        """Register *fn* to run once the test completes.

        Cleanup functions run in registration order, after all subtests
        have resolved and before the parent is notified.  They must be
        synchronous.  Non-callables are ignored.
        """
        if callable(fn):
            self._cleanup.append(fn)

    def _run_cleanup(self) -> None:
        if self._notified:
            return
        self._notified = True
        while self._cleanup:
            fn = self._cleanup.pop(0)
            try:
                fn()
            except Exception as exc:
                self.error(exc)
        logger.debug("Test '%s' completed (passed=%s)", self.name, self.is_passed())
        if self._on_done is not None:
            self._on_done(self.finish_reason, self.is_passed())

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def comment(self, data: Any) -> None:
        """Add a comment; accepted even after the test is finished."""
        self.ping()
        self.contents.append(Annotation(AnnotationKind.COMMENT, data))

    def error(self, data: Any) -> None:
        """Add an error; accepted even after the test is finished.

        Any error keeps the test from passing.
        """
        self.ping()
        self.contents.append(Annotation(AnnotationKind.ERROR, data))
        self.errors += 1
