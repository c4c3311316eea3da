"""Output rendering abstraction for the circuitforge CLI.

File: src/circuitforge_repair/ui/render.py
Last updated: 2026-10-19

Purpose
- Provide a thin rendering layer for CLI output with ``rich`` styling on terminals.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Plain, deterministic text when color is off (pipes, tests, NO_COLOR).
- All public methods must be safe to call in any environment.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence

    from circuitforge_repair.domain.diagnostics import ValidationDiagnostic
    from circuitforge_repair.domain.events import ProgressEvent


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


_HANDLING_STYLES = {
    "must_repair": "bold red",
    "should_demote": "yellow",
    "auto_fixable": "cyan",
}


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output unless the stream is a color
    capable terminal, in which case output goes through a ``rich`` console.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)
        self._console = Console(file=self._stream, highlight=False) if self._color else None

    @property
    def color(self) -> bool:
        return self._color

    def _print(self, line: str, *, style: str | None = None) -> None:
        if self._console is not None:
            self._console.print(line, style=style, markup=False)
        else:
            print(line, file=self._stream)

    def heading(self, text: str) -> None:
        self._print(text, style="bold")

    def kv(self, key: str, value: object) -> None:
        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def blank(self) -> None:
        self._print("")

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._print("")
        self._print(title, style="bold")

    def warning(self, text: str) -> None:
        self._print(f"  Warning: {text}", style="yellow")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a table; ``rich`` draws it on terminals, padded ASCII otherwise."""

        if not rows:
            return
        if self._console is not None:
            table = Table(title=title)
            for header in headers:
                table.add_column(header)
            for row in rows:
                table.add_row(*(str(cell) for cell in row))
            self._console.print(table)
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._print(f"  {_pad(list(headers))}")
        self._print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._print(f"  {_pad(list(row))}")

    def diagnostics(self, diagnostics: Sequence[ValidationDiagnostic], *, title: str) -> None:
        if not diagnostics:
            self.kv(title, "none")
            return
        rows = [
            (
                str(item.severity),
                item.category,
                "" if item.handling is None else item.handling.value,
                item.message,
            )
            for item in diagnostics
        ]
        self.table(("SEV", "CATEGORY", "HANDLING", "MESSAGE"), rows, title=title)

    def event(self, event: ProgressEvent) -> None:
        """One line per progress event; payload details only in verbose mode."""

        payload = event.payload
        label = f"[{event.sequence:>3}] {event.event_type.value}"
        detail = ""
        if "attempt" in payload:
            detail = f" attempt={payload['attempt']}"
        if "strategy" in payload:
            detail += f" strategy={payload['strategy']}"
        if "status" in payload:
            detail += f" status={payload['status']}"
        if "stop_reason" in payload:
            detail += f" stop_reason={payload['stop_reason']}"
        style = None
        if event.is_terminal:
            style = "bold green" if event.event_type.value == "converged" else "bold red"
        self._print(label + detail, style=style)
        if self.verbose:
            self._print(f"      {event.payload_json}", style="dim")

    def handling(self, handling: str, message: str) -> None:
        self._print(f"  {handling:<14} {message}", style=_HANDLING_STYLES.get(handling))

    def ok(self, label: str) -> None:
        self._print(f"  OK  {label}", style="green")

    def fail(self, label: str) -> None:
        self._print(f"  FAIL  {label}", style="red")


def create_renderer(
    *,
    no_color: bool = False,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
