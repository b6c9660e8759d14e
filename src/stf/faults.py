"""Fault boundaries for asynchronous test bodies.

A :class:`FaultScope` plays the role of a supervising task group: every
continuation spawned through it (callbacks, timers, tasks) runs with the
scope stored in a :mod:`contextvars` variable, and any exception raised
by those continuations is funnelled to the scope's single handler.

Loop callbacks scheduled *directly* on asyncio from inside a scope
inherit the context too; :func:`install_fault_handler` teaches the loop
to route their uncaught errors back to the owning scope.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from stf.scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

_current_scope: contextvars.ContextVar[FaultScope | None] = contextvars.ContextVar(
    "stf_fault_scope", default=None
)

FaultHandler = Callable[[BaseException], None]


def current_scope() -> FaultScope | None:
    """Return the fault scope the caller is running in, if any."""
    return _current_scope.get()


def route_fault(context: contextvars.Context, exc: BaseException) -> bool:
    """Deliver *exc* to the scope stored in *context*.

    Returns:
        ``True`` if a scope took the fault, ``False`` if *context*
        belongs to no scope.
    """
    scope = context.get(_current_scope)
    if scope is None:
        return False
    scope.fault(exc)
    return True


class FaultScope:
    """Captures exceptions from all work spawned through it.

    A scope never hands a fault to an enclosing scope: faults raised
    after its test has finished still go to *handler*, which records
    them on that same test.

    Args:
        scheduler: Scheduler used to run the scope's continuations.
        handler: Called with the exception on every fault.
    """

    def __init__(self, scheduler: Scheduler, handler: FaultHandler) -> None:
        self._scheduler = scheduler
        self._handler = handler
        self._context = contextvars.copy_context()
        self._context.run(_current_scope.set, self)

    def context(self) -> contextvars.Context:
        """Return a fresh context bound to this scope."""
        return self._context.copy()

    def fault(self, exc: BaseException) -> None:
        """Hand *exc* to the handler."""
        self._handler(exc)

    def guard(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        """Wrap *fn* so its exceptions, and those of any awaitable it
        returns, become faults of this scope."""

        @functools.wraps(fn)
        def guarded(*args: Any, **kwargs: Any) -> Any:
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    return self.spawn(result)
                return result
            except Exception as exc:
                self.fault(exc)
                return None

        return guarded

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run *fn* on a later turn inside this scope."""
        return self._scheduler.call_soon(self.guard(fn), *args, context=self.context())

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run *fn* after *delay* seconds inside this scope."""
        return self._scheduler.call_later(
            delay, self.guard(fn), *args, context=self.context()
        )

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Future[Any]:
        """Run *awaitable* as a task inside this scope."""
        task = self._scheduler.spawn(awaitable, context=self.context())
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.fault(exc)


class _LoopFaultHandler:
    """Loop exception handler that forwards errors to fault scopes."""

    def __init__(self, previous: Callable[..., Any] | None) -> None:
        self.previous = previous

    def __call__(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        source = context.get("handle") or context.get("future") or context.get("task")
        get_context = getattr(source, "get_context", None)
        if isinstance(exc, Exception) and get_context is not None:
            source_context = get_context()
            if source_context is not None and route_fault(source_context, exc):
                return
        if self.previous is not None:
            self.previous(loop, context)
        else:
            loop.default_exception_handler(context)


def install_fault_handler(loop: asyncio.AbstractEventLoop) -> None:
    """Install the scope-routing exception handler on *loop* (once)."""
    current = loop.get_exception_handler()
    if isinstance(current, _LoopFaultHandler):
        return
    logger.debug("Installing fault scope exception handler on %r", loop)
    loop.set_exception_handler(_LoopFaultHandler(current))
