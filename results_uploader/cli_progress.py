"""Console rendering and progress helpers for the results-up CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .models import CredentialGrant, ReportResult, UploadOutcome, UploadTask


console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]results-up[/bold green]",
        subtitle="[dim]results uploader CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_result(result: ReportResult) -> None:
    """Render the final submission result."""
    if result.success:
        console.print(f"[bold green]{result.message}[/bold green]")
    else:
        console.print(f"[bold red]Error:[/bold red] {result.message}")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


class BatchUploadProgressDisplay:
    """Event-based console display for a batch of result file uploads."""

    def __init__(self, total_files: int = 0):
        self._total = total_files
        self._done = 0
        self._failed = 0
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=36),
            TextColumn("{task.completed}/{task.total}"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            TimeElapsedColumn(),
            expand=False,
            console=console,
        )
        self._task_id: Optional[TaskID] = None

    def _emit_timeline(self, status: str, name: str, detail: Optional[str] = None) -> None:
        stamp = time.strftime("%H:%M:%S")
        palette = {
            "UP": "cyan",
            "DONE": "green",
            "FAIL": "red",
            "AUTH": "blue",
        }
        color = palette.get(status, "white")
        detail_label = f" {detail}" if detail else ""
        console.print(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {name}{detail_label}")

    def _ensure_started(self) -> None:
        if self._task_id is not None:
            return
        self._progress.start()
        self._task_id = self._progress.add_task(
            "files",
            label="Files",
            total=max(self._total, 1),
            completed=0,
            detail="",
        )

    def _update(self) -> None:
        self._ensure_started()
        completed = self._done + self._failed
        self._progress.update(
            self._task_id,
            completed=min(completed, max(self._total, completed)),
            total=max(self._total, completed, 1),
            detail=f"uploaded={self._done} failed={self._failed}",
        )

    def on_file_start(self, task: UploadTask, key: str) -> None:
        self._ensure_started()
        self._emit_timeline("UP", task.file_name, f"-> {key}")

    def on_file_complete(self, task: UploadTask, num_bytes: int) -> None:
        self._done += 1
        self._emit_timeline("DONE", task.file_name, _human_size(num_bytes))
        self._update()

    def on_file_fail(self, task: UploadTask, warnings: List[str]) -> None:
        self._failed += 1
        self._emit_timeline("FAIL", task.file_name, "; ".join(warnings))
        self._update()

    def on_credentials_renewed(self, grant: CredentialGrant) -> None:
        expires = time.strftime("%H:%M:%S", time.localtime(grant.expires_at))
        self._emit_timeline("AUTH", "storage credentials renewed", f"(expire {expires})")

    def on_finish(self, outcome: UploadOutcome) -> None:
        if self._task_id is not None:
            self._progress.stop()
        console.print(
            f"[bold]Finished[/bold] uploaded={outcome.files_uploaded} "
            f"bytes={_human_size(outcome.bytes_uploaded)} warnings={len(outcome.warnings)}"
        )
