"""Plain-text rendering of test results.

:class:`ResultWriter` prints a result tree to any object with a
``write(str)`` method.  Output goes through a :class:`rich.console.Console`
so that, on an interactive terminal, failures are bold and long lines are
wrapped to the terminal width; on anything else the text is written
plainly and only split on its own newlines.
"""

from __future__ import annotations

import sys
import traceback
from typing import Any, TextIO

from rich.console import Console
from rich.pretty import pretty_repr
from rich.text import Text

from stf.core import Test
from stf.models import Annotation, AnnotationKind, Checkpoint


class _Sink:
    """Adapts a write-only sink to the file interface rich expects."""

    def __init__(self, stream: Any) -> None:
        self._stream = stream
        self.encoding = getattr(stream, "encoding", None) or "utf-8"

    def write(self, text: str) -> int:
        self._stream.write(text)
        return len(text)

    def flush(self) -> None:
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()

    def isatty(self) -> bool:
        isatty = getattr(self._stream, "isatty", None)
        return bool(isatty and isatty())


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def _were(count: int) -> str:
    return "was" if count == 1 else "were"


class ResultWriter:
    """Writes :class:`~stf.core.Test` results to a stream.

    Any object with the same methods can stand in for this class as the
    writer of :func:`stf.test`.

    Args:
        stream: Object with a ``write(str)`` method.  Defaults to
            ``sys.stdout``.  An optional ``isatty()`` decides whether
            styling and wrapping apply, and an optional ``columns``
            attribute overrides the wrap width.
    """

    #: Added to the indent for each level of nested content.
    indent_increase = "  "

    def __init__(self, stream: TextIO | Any | None = None) -> None:
        self._output = stream if stream is not None else sys.stdout
        sink = _Sink(self._output)
        self._console = Console(
            file=sink,
            force_terminal=sink.isatty(),
            width=getattr(self._output, "columns", None),
            highlight=False,
            markup=False,
            emoji=False,
        )
        self._progress_exists = False

    @property
    def interactive(self) -> bool:
        """Whether the output is a terminal."""
        return self._console.is_terminal

    def write_test(self, test: Test, indent: str = "") -> None:
        """Write *test* and, unless it passed, why and all of its contents.

        Works on tests that are not completed too, which is useful when
        inspecting a run that never finished.
        """
        if test.is_passed():
            status = Text("passed")
        elif test.is_completed():
            status = Text("failed", style="bold")
        else:
            status = Text("incomplete", style="bold")

        self.write_data(
            Text.assemble(status, f" -- {test.passed}/{test.total}: {test.name}"),
            indent,
        )
        if test.is_passed():
            return
        indent += self.indent_increase
        self.write_test_messages(test, indent)
        for item in test.contents:
            self.write_test_content(item, indent)

    def write_test_messages(self, test: Test, indent: str = "") -> None:
        """Write the single most important reason *test* did not pass.

        Priority: not finished, expected count not met, subtests still
        pending, abnormal finish, failures, errors.  Only the first
        applicable message is written.
        """
        if not test.finished:
            self.write_error("Test was not finished before results were output.", indent)
        elif test.expected is not None and test.expected != test.total:
            unseen = test.expected - test.total
            self.write_error(
                f"{unseen} expected check{_plural(unseen)} or test{_plural(unseen)} "
                f"{_were(unseen)} not seen.",
                indent,
            )
        elif test.pending != 0:
            self.write_error(
                f"{test.pending} subtest{_plural(test.pending)} "
                f"{_were(test.pending)} not completed.",
                indent,
            )
        elif test.finish_reason:
            # The reason itself was recorded in the contents at finish time.
            self.write_error("Test finished abnormally, see results.", indent)
        elif test.failed != 0:
            self.write_error(
                f"{test.failed} test{_plural(test.failed)} failed, see results.", indent
            )
        elif test.errors != 0:
            self.write_error(
                f"{test.errors} error message{_plural(test.errors)} "
                f"{_were(test.errors)} reported, see results.",
                indent,
            )

    def write_test_content(self, item: Any, indent: str = "") -> None:
        """Write one entry of a test's contents."""
        if isinstance(item, Checkpoint):
            status = Text("passed") if item.passed else Text("failed", style="bold")
            self.write_data(Text.assemble(status, f": {item.name}"), indent)
        elif isinstance(item, Annotation):
            if item.kind == AnnotationKind.ERROR:
                self.write_error(item.data, indent)
            elif item.kind == AnnotationKind.COMMENT:
                self.write_comment(item.data, indent)
            else:
                self.write_data(item.data, indent + "// ???? ")
        elif isinstance(item, Test):
            self.write_test(item, indent)
        else:
            # Something other than test results ended up in the contents.
            self.write_data(item, indent + "// ??? ")

    def write_data(self, message: Any, line_header: str = "", bold: bool = False) -> None:
        """Write raw text, prefixing every line with *line_header*.

        Strings and :class:`rich.text.Text` are written as-is, exceptions
        as their formatted traceback, anything else as its pretty repr.
        Reserved for test results; use :meth:`write_comment` or
        :meth:`write_error` for messages.
        """
        if isinstance(message, BaseException):
            message = "".join(traceback.format_exception(message)).rstrip("\n")
        elif not isinstance(message, (str, Text)):
            message = pretty_repr(message)
        text = Text(message) if isinstance(message, str) else message

        if self.interactive:
            width = max(self._console.width - len(line_header), 1)
            lines = list(text.wrap(self._console, width, overflow="fold"))
        else:
            lines = text.split("\n", allow_blank=True)

        self.end_progress()
        for line in lines:
            out = Text.assemble(line_header, line)
            if bold:
                out.stylize("bold")
            self._console.print(out, soft_wrap=True)

    def write_comment(self, data: Any, indent: str = "") -> None:
        """Write *data* as a ``// `` comment."""
        self.write_data(data, indent + "// ")

    def write_error(self, data: Any, indent: str = "") -> None:
        """Write *data* as a bold ``// ! `` error."""
        self.write_data(data, indent + "// ! ", bold=True)

    def show_progress(self, message: str, indent: str = "") -> None:
        """Extend the progress indicator, starting it with *message* if needed.

        The indicator stays on one line until anything else is written.
        """
        if self._progress_exists:
            self._console.print("-", end="", soft_wrap=True)
        else:
            self._progress_exists = True
            self._console.print(f"{indent}/* {message} -", end="", soft_wrap=True)

    def end_progress(self) -> None:
        """Close the progress indicator, if one is open."""
        if self._progress_exists:
            self._console.print("*/", soft_wrap=True)
            self._progress_exists = False
