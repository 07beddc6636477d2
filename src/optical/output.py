"""Output formatting with strict stdout/stderr discipline.

Follows `clig.dev <https://clig.dev/>`_ conventions:

* **stdout** -- matching Optica nodes only, one per line (JSON) or one per
  line of tab-separated field values (``--just``).  This is what ``jq``,
  ``ssh $(...)`` and friends consume.
* **stderr** -- all diagnostics (download progress, debug output, status lines,
  errors).  Never contaminates the data stream.
* **TTY detection** -- JSON is pretty-printed and highlighted when stdout is
  an interactive terminal; the progress bar is only drawn when stderr is.
* **Colour control** -- respects ``NO_COLOR`` and ``TERM=dumb``.

The module exposes two layers:

1. :class:`OutputManager` -- a stateful object holding format preferences,
   Rich consoles, and quiet/verbose flags.  Created once in
   :func:`~optical.app.query_command` and installed via :func:`set_output`.
2. Module-level convenience functions (:func:`info`, :func:`error`,
   :func:`debug`, etc.) that delegate to the global ``OutputManager``.
"""

from __future__ import annotations

import json
import os
import sys
import time
from typing import Any, Iterable, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, ProgressColumn, Task, TaskID, TextColumn
from rich.syntax import Syntax
from rich.text import Text

from optical.client import ProgressEvent

LARGE_OUTPUT_THRESHOLD = 1000
"""Record count above which output to a TTY is slowed down."""

TTY_DELAY = 0.00001
"""Pause between lines of large TTY output so Ctrl-C gets a chance to land."""

PROGRESS_WIDTH = 40


class OutputManager:
    """Central manager for all CLI output with stdout/stderr discipline.

    Args:
        pretty: Pretty-print JSON records.  ``None`` means "pretty when
            stdout is a TTY".
        no_color: Disable all colour and Rich markup.
        quiet: Suppress informational messages and the progress bar.
        verbose: Enable debug-level messages on stderr.
    """

    def __init__(
        self,
        pretty: Optional[bool] = None,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._pretty = _is_tty() if pretty is None else pretty

        # Console for stdout (data output)
        self._stdout = Console(file=sys.stdout, no_color=self._no_color)

        # Console for stderr (diagnostics)
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def pretty(self) -> bool:
        return self._pretty

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_records(
        self,
        records: Sequence[dict[str, Any]],
        just: Optional[Sequence[str]] = None,
    ) -> None:
        """Print Optica nodes to stdout, one per line.

        Args:
            records: Node attribute mappings, printed in the given order.
            just: When non-empty, print only these fields (first occurrence
                of each) as tab-separated values instead of JSON.  Missing
                fields print as empty strings.
        """
        columns = list(dict.fromkeys(just or ()))
        slow_down = len(records) >= LARGE_OUTPUT_THRESHOLD and _is_tty()
        if slow_down:
            self.debug("reducing output speed to allow Ctrl-C")

        for record in records:
            if columns:
                self.print_data("\t".join(format_cell(record.get(c)) for c in columns))
            else:
                self._print_record(record)
            if slow_down:
                time.sleep(TTY_DELAY)

    def print_data(self, text: str) -> None:
        """Print raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        """Print an informational message to stderr. Suppressed by ``--quiet``."""
        if not self._quiet:
            if self._no_color:
                print(message, file=sys.stderr, flush=True)
            else:
                self._stderr.print(message, markup=False)

    def success(self, message: str) -> None:
        """Print a green success message to stderr. Suppressed by ``--quiet``."""
        if not self._quiet:
            if self._no_color:
                print(message, file=sys.stderr, flush=True)
            else:
                self._stderr.print(message, style="green", markup=False)

    def error(self, message: str) -> None:
        """Print a bold-red error to stderr. Never suppressed."""
        if self._no_color:
            print(f"Error: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[bold red]Error:[/bold red] {escape(message)}")

    def debug(self, message: str) -> None:
        """Print a debug message to stderr. Only shown when ``--verbose`` is active."""
        if self._verbose:
            if self._no_color:
                print(f"[debug] {message}", file=sys.stderr, flush=True)
            else:
                self._stderr.print(f"[dim]\\[debug] {escape(message)}[/dim]")

    def progress_bar(self) -> Optional[ProgressBar]:
        """Return a download progress bar, or ``None`` when it should not be drawn.

        The bar is suppressed by ``--quiet`` and when stderr is not a TTY.
        """
        if self._quiet or not _is_tty(sys.stderr):
            return None
        return ProgressBar(self._stderr)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _print_record(self, record: dict[str, Any]) -> None:
        if not self._pretty:
            self.print_data(json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str))
            return
        text = json.dumps(record, indent=2, ensure_ascii=False, default=str)
        if self._no_color or not _is_tty():
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))


class DownloadColumn(ProgressColumn):
    """Bar and percentage in the historical ``[>>>>      ]  NN.NN%`` form.

    Shows ``N bytes`` instead when the task has no total, which is the case
    when the server sent no content length.
    """

    def __init__(self, width: int = PROGRESS_WIDTH) -> None:
        super().__init__()
        self.width = width

    def render(self, task: Task) -> Text:
        if task.total is None:
            return Text(f"{int(task.completed)} bytes")
        ratio = min(task.completed / task.total, 1.0) if task.total else 1.0
        done = int(self.width * ratio)
        return Text(f"[{'>' * done}{' ' * (self.width - done)}] {ratio * 100:6.2f}%")


class ProgressBar:
    """Download indicator drawn with :class:`rich.progress.Progress`.

    Looks like ``Download [>>>>>           ]  12.50%``, or
    ``Download 2048 bytes`` when the server sent no content length.  Use as
    the ``on_progress`` callback of :meth:`~optical.client.Fetcher.fetch`
    and call :meth:`finish` afterwards.
    """

    def __init__(self, console: Console, width: int = PROGRESS_WIDTH) -> None:
        self._progress = Progress(
            TextColumn("Download"),
            DownloadColumn(width),
            console=console,
            auto_refresh=False,
        )
        self._task_id: Optional[TaskID] = None
        self._finished = False

    def __call__(self, event: ProgressEvent) -> None:
        if self._finished:
            return
        if self._task_id is None:
            self._progress.start()
            self._task_id = self._progress.add_task("download", total=None)
        if event.ratio is None:
            self._progress.update(self._task_id, total=None, completed=event.bytes_so_far, refresh=True)
        else:
            self._progress.update(self._task_id, total=1.0, completed=event.ratio, refresh=True)
        if event.is_complete:
            self.finish()

    def finish(self) -> None:
        """Leave the last state on screen and stop redrawing."""
        if self._task_id is not None and not self._finished:
            self._progress.stop()
        self._finished = True


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def format_cell(value: Any) -> str:
    """Render one field value for tab-separated output.

    ``None`` becomes an empty string, lists are joined with commas, and
    mappings are emitted as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(format_cell(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def _is_tty(stream: Any = None) -> bool:
    """Check if *stream* (stdout by default) is a TTY."""
    stream = sys.stdout if stream is None else stream
    return hasattr(stream, "isatty") and stream.isatty()


def _should_disable_color() -> bool:
    """Check if color should be disabled per clig.dev.

    Returns True when NO_COLOR env var is set (any value) or TERM=dumb.
    """
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None


# ------------------------------------------------------------------ #
# Convenience functions that use the global instance
# ------------------------------------------------------------------ #


def print_records(
    records: Sequence[dict[str, Any]],
    just: Optional[Iterable[str]] = None,
) -> None:
    """Print records to stdout via the global :class:`OutputManager`."""
    get_output().print_records(records, list(just) if just else None)


def info(message: str) -> None:
    """Print info message to stderr via the global OutputManager."""
    get_output().info(message)


def error(message: str) -> None:
    """Print error to stderr via the global OutputManager."""
    get_output().error(message)


def success(message: str) -> None:
    """Print success message to stderr via the global OutputManager."""
    get_output().success(message)


def debug(message: str) -> None:
    """Print debug message to stderr via the global OutputManager."""
    get_output().debug(message)
