"""CLI entry point for stf.

Runs a single, explicitly named test body and prints its results.

Usage::

    stf run mypackage.tests:body --timeout 10
    stf run mypackage.tests:body --quiet
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import sys
from typing import Any, Callable

import click
from rich.console import Console
from rich.logging import RichHandler

from stf.config import RunnerConfig
from stf.errors import TargetError
from stf.runner import run_test

# Results go to stdout; diagnostics stay on stderr.
console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_target(target: str) -> Callable[..., Any]:
    """Import ``module:function`` and return the callable it names.

    Raises:
        TargetError: If the string is malformed, the import fails, or
            the attribute is missing or not callable.
    """
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        raise TargetError(
            f"Target must look like 'module:function', got {target!r}", target=target
        )
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise TargetError(f"Cannot import {module_name!r}: {exc}", target=target) from exc
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise TargetError(
                f"{module_name!r} has no attribute {attr_path!r}", target=target
            ) from exc
    if not callable(obj):
        raise TargetError(f"{target!r} is not callable", target=target)
    return obj


@click.group()
@click.version_option(package_name="simple-test-framework")
def main() -> None:
    """stf: a small asynchronous test framework."""


@main.command()
@click.argument("target")
@click.option("--name", default=None, help="Name of the root test (defaults to TARGET).")
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Inactivity timeout in seconds (0 disables). Defaults to $STF_TIMEOUT or 5.",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print results.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def run(
    target: str,
    name: str | None,
    timeout: float | None,
    quiet: bool,
    verbose: bool,
) -> None:
    """Run the test body TARGET, given as module:function."""
    _setup_logging(verbose)

    try:
        config = RunnerConfig.from_env()
    except ValueError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise SystemExit(2) from exc
    if timeout is not None:
        config.timeout = timeout

    try:
        body = load_target(target)
    except TargetError as exc:
        console.print(f"[red]Failed to load test:[/red] {exc}")
        raise SystemExit(2) from exc

    writer_kwargs: dict[str, Any] = {"writer": None} if quiet else {"output": sys.stdout}
    root = asyncio.run(
        run_test(
            name or target,
            body,
            timeout=config.timeout,
            progress_interval=config.progress_interval,
            **writer_kwargs,
        )
    )
    if not root.is_passed():
        raise SystemExit(1)


if __name__ == "__main__":
    main()
