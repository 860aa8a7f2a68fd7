"""Console output for the CLI.

Rich tables and progress bars on a TTY; plain click output otherwise
(or when SQLCLUSTER_PLAIN is set).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from .reporting import format_cell, to_table

GRADE_STYLES = {
    "A": "green",
    "B": "bright_green",
    "C": "yellow",
    "D": "red",
    "F": "bold red",
}


def _wants_plain() -> bool:
    v = os.environ.get("SQLCLUSTER_PLAIN", "").strip().lower()
    return v in {"1", "true", "yes", "on"}


def _is_tty() -> bool:
    try:
        return bool(click.get_text_stream("stdout").isatty())
    except Exception:
        return False


@dataclass(frozen=True)
class UI:
    rich: bool
    _console: Any

    @staticmethod
    def create() -> "UI":
        if (not _wants_plain()) and _is_tty():
            return UI(rich=True, _console=Console())
        return UI(rich=False, _console=None)

    def echo(self, text: str = "") -> None:
        if self.rich:
            self._console.print(text)
        else:
            click.echo(text)

    def rule(self, title: str) -> None:
        if self.rich:
            self._console.rule(title)
        else:
            click.echo(f"\n== {title} ==")

    def fields(self, values: dict[str, Any]) -> None:
        """Aligned `key: value` lines (run metadata, diagnostics)."""
        if not values:
            return
        width = max(len(k) for k in values)
        for k, v in values.items():
            self.echo(f"{k.ljust(width)} : {format_cell(v)}")

    def table(
        self,
        *,
        title: Optional[str],
        columns: list[str],
        rows: list[dict[str, Any]],
    ) -> None:
        if not rows:
            self.echo("(no rows)")
            return

        if self.rich:
            t = Table(title=title, show_lines=False)
            for c in columns:
                t.add_column(c, overflow="fold")
            for r in rows:
                t.add_row(*(self._styled_cell(c, r.get(c)) for c in columns))
            self._console.print(t)
            return

        if title:
            self.echo(title)
        self.echo(to_table(rows, columns))

    def _styled_cell(self, column: str, v: Any) -> str:
        text = format_cell(v)
        style = GRADE_STYLES.get(text) if column == "grade" else None
        return f"[{style}]{text}[/{style}]" if style else text

    def progress(self, total: int) -> "ProgressUI":
        if self.rich:
            p = Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total} iterations"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )
            return ProgressUI(rich=True, _progress=p, _task_id=None, total=total)
        return ProgressUI(rich=False, _progress=None, _task_id=None, total=total)


@dataclass
class ProgressUI:
    rich: bool
    _progress: Any
    _task_id: Any
    total: int

    def __enter__(self) -> "ProgressUI":
        if self.rich:
            self._progress.__enter__()
            self._task_id = self._progress.add_task(
                "Clustering", total=self.total
            )
        return self

    def on_iteration(self, iteration: int, changed: bool) -> None:
        """Callback for KMeansEngine.run."""
        if not self.rich:
            return
        description = "Clustering" if changed else "Converged"
        self._progress.update(
            self._task_id, completed=iteration, description=description
        )

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.rich:
            self._progress.__exit__(exc_type, exc, tb)
