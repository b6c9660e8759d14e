"""Shared fixtures for the stf test suite."""

from __future__ import annotations

from typing import Any

import pytest

from stf.scheduling import ManualScheduler


class DoneRecorder:
    """Completion callback that records every notification."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, bool]] = []

    def __call__(self, reason: Any, passed: bool) -> None:
        self.calls.append((reason, passed))


@pytest.fixture()
def scheduler() -> ManualScheduler:
    """A virtual clock starting at t=0."""
    return ManualScheduler()


@pytest.fixture()
def done() -> DoneRecorder:
    return DoneRecorder()
