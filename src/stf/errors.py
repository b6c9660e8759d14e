"""Exceptions raised outside the result tree.

The lifecycle engine never raises at its callers; these cover the
command-line front end.
"""

from __future__ import annotations


class StfError(Exception):
    """Base exception for stf failures that are not test results."""


class TargetError(StfError):
    """A test body target could not be imported or is not callable.

    Attributes:
        target: The ``module:function`` string that failed to load.
    """

    def __init__(self, message: str, *, target: str = "") -> None:
        super().__init__(message)
        self.target = target
