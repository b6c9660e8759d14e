"""Scheduling abstraction for the test lifecycle engine.

The engine never touches the event loop directly.  It goes through a
:class:`Scheduler`, which lets the same lifecycle code run on a real
asyncio loop (:class:`AsyncioScheduler`) or on a deterministic virtual
clock (:class:`ManualScheduler`) in tests.
"""

from __future__ import annotations

import asyncio
import contextvars
import heapq
import inspect
import itertools
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from stf.faults import install_fault_handler, route_fault

logger = logging.getLogger(__name__)


@runtime_checkable
class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


@runtime_checkable
class Scheduler(Protocol):
    """Protocol for the single-threaded cooperative scheduler.

    Implementations must run every callback on one thread and never
    invoke a callback synchronously from the call that scheduled it.
    """

    def time(self) -> float: ...

    def call_soon(
        self,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> TimerHandle: ...

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> TimerHandle: ...

    def spawn(
        self,
        awaitable: Awaitable[Any],
        *,
        context: contextvars.Context | None = None,
    ) -> asyncio.Future[Any]: ...

    def watch_faults(self) -> None: ...


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    When no loop is given, the running loop is looked up on every call,
    so an instance can be created before the loop starts.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """The bound loop, or the currently running one."""
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def time(self) -> float:
        return self.loop.time()

    def call_soon(
        self,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> asyncio.Handle:
        return self.loop.call_soon(callback, *args, context=context)

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback, *args, context=context)

    def spawn(
        self,
        awaitable: Awaitable[Any],
        *,
        context: contextvars.Context | None = None,
    ) -> asyncio.Task[Any]:
        if not asyncio.iscoroutine(awaitable):
            awaitable = _await(awaitable)
        return self.loop.create_task(awaitable, context=context)

    def watch_faults(self) -> None:
        """Route uncaught loop callback errors to their fault scopes."""
        install_fault_handler(self.loop)


class ManualHandle:
    """Callback handle produced by :class:`ManualScheduler`."""

    def __init__(
        self,
        when: float,
        callback: Callable[..., Any],
        args: tuple[Any, ...],
        context: contextvars.Context | None,
    ) -> None:
        self.when = when
        self._callback = callback
        self._args = args
        self._context = context if context is not None else contextvars.copy_context()
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        try:
            self._context.run(self._callback, *self._args)
        except Exception as exc:
            # Same contract as the asyncio loop handler: errors raised
            # inside a fault scope belong to that scope.
            if not route_fault(self._context, exc):
                raise


class ManualScheduler:
    """Deterministic scheduler driven by a virtual clock.

    Nothing runs until the owner calls :meth:`run_ready` or
    :meth:`advance`.  Coroutines cannot be driven; use
    :class:`AsyncioScheduler` for ``async def`` bodies.

    Example::

        scheduler = ManualScheduler()
        t = Test("root", timeout=2.0, scheduler=scheduler)
        scheduler.advance(2.0)
        assert t.finish_reason == "timeout"
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._ready: deque[ManualHandle] = deque()
        self._timers: list[tuple[float, int, ManualHandle]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    @property
    def pending_timers(self) -> int:
        """Number of timers that are armed and not cancelled."""
        return sum(1 for _, _, handle in self._timers if not handle.cancelled())

    def call_soon(
        self,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> ManualHandle:
        handle = ManualHandle(self._now, callback, args, context)
        self._ready.append(handle)
        return handle

    def call_later(
        self,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
        context: contextvars.Context | None = None,
    ) -> ManualHandle:
        handle = ManualHandle(self._now + max(delay, 0.0), callback, args, context)
        heapq.heappush(self._timers, (handle.when, next(self._seq), handle))
        return handle

    def spawn(
        self,
        awaitable: Awaitable[Any],
        *,
        context: contextvars.Context | None = None,
    ) -> asyncio.Future[Any]:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise TypeError("ManualScheduler cannot drive coroutines; use AsyncioScheduler")

    def watch_faults(self) -> None:
        """No-op: :class:`ManualHandle` routes faults itself."""

    def run_ready(self) -> int:
        """Run every ready callback, including ones they schedule.

        Returns:
            The number of callbacks that ran.
        """
        count = 0
        while self._ready:
            handle = self._ready.popleft()
            if handle.cancelled():
                continue
            handle._run()
            count += 1
        return count

    def advance(self, seconds: float) -> None:
        """Move the virtual clock forward, firing timers that fall due.

        Timers fire in deadline order; ready callbacks are drained after
        each one, so a timer armed while advancing fires in the same call
        when its deadline is within the window.
        """
        target = self._now + seconds
        self.run_ready()
        while self._timers and self._timers[0][0] <= target:
            when, _, handle = heapq.heappop(self._timers)
            if handle.cancelled():
                continue
            self._now = when
            logger.debug("Firing virtual timer at t=%.3f", when)
            handle._run()
            self.run_ready()
        self._now = target
        self.run_ready()
