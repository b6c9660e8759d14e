"""Runner configuration.

Defaults for the entry point and the CLI, overridable through the
environment:

    STF_TIMEOUT: Inactivity timeout of the root test, in seconds.
    STF_PROGRESS_INTERVAL: Seconds between progress indicator ticks.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from stf.core import DEFAULT_TIMEOUT

DEFAULT_PROGRESS_INTERVAL = 0.5


def _float_from_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class RunnerConfig:
    """Settings for running a root test.

    Attributes:
        timeout: Inactivity timeout of the root test in seconds.
            Zero or negative disables it.
        progress_interval: Seconds between progress indicator ticks
            while the root test runs.
    """

    timeout: float = DEFAULT_TIMEOUT
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RunnerConfig:
        """Build a config from ``STF_*`` environment variables.

        Raises:
            ValueError: If a variable is set but not a number.
        """
        source = os.environ if env is None else env
        return cls(
            timeout=_float_from_env(source, "STF_TIMEOUT", DEFAULT_TIMEOUT),
            progress_interval=_float_from_env(
                source, "STF_PROGRESS_INTERVAL", DEFAULT_PROGRESS_INTERVAL
            ),
        )
