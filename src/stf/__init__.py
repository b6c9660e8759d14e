"""stf: a small asynchronous unit-testing framework.

Tests form a tree: each :class:`Test` records checkpoints, comments,
errors and subtests, and finishes explicitly, after an expected number
of results, on an inactivity timeout, or when its body raises.  Results
can be printed with :class:`ResultWriter`.

Example::

    import asyncio
    import stf

    async def body(t):
        t.check(1 + 1 == 2, "addition works")
        t.test("nested", lambda sub: (sub.check(True, "ok"), sub.finish()))
        t.finish()

    asyncio.run(stf.run_test("example", body))
"""

from stf.config import RunnerConfig
from stf.core import DEFAULT_TIMEOUT, Test
from stf.errors import StfError, TargetError
from stf.faults import FaultScope, current_scope
from stf.models import Annotation, AnnotationKind, Checkpoint, FinishReason
from stf.runner import UNSET, run_test, test
from stf.scheduling import AsyncioScheduler, ManualScheduler, Scheduler
from stf.writer import ResultWriter

__all__ = [
    "Annotation",
    "AnnotationKind",
    "AsyncioScheduler",
    "Checkpoint",
    "DEFAULT_TIMEOUT",
    "FaultScope",
    "FinishReason",
    "ManualScheduler",
    "ResultWriter",
    "RunnerConfig",
    "Scheduler",
    "StfError",
    "TargetError",
    "Test",
    "UNSET",
    "current_scope",
    "run_test",
    "test",
]
