"""Result tree data models.

Defines the leaf records stored in a :class:`~stf.core.Test`'s contents
and the reasons the engine itself uses when a test ends abnormally.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class AnnotationKind(str, enum.Enum):
    """Kinds of annotation that can be attached to a test."""

    COMMENT = "comment"
    ERROR = "error"


class FinishReason(str, enum.Enum):
    """Abnormal finish reasons raised by the engine itself.

    Callers may pass any other truthy value to :meth:`Test.finish`;
    these two are the ones the engine produces on its own.
    """

    BAIL = "bail"
    TIMEOUT = "timeout"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Checkpoint:
    """A single pass/fail assertion recorded by ``check`` or ``catch``.

    Attributes:
        name: Human-readable name of the checkpoint.
        passed: Whether the checkpoint passed.  Coerced to ``bool``.
    """

    name: str
    passed: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, "passed", bool(self.passed))


@dataclass(frozen=True)
class Annotation:
    """A comment or error attached to a test.

    Attributes:
        kind: Whether this is a comment or an error.
        data: Arbitrary payload: a string, an exception, or any object
            with a useful ``repr``.
    """

    kind: AnnotationKind
    data: Any
