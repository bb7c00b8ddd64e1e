"""
Renders orchestrator progress events as a Rich progress bar.
"""

import logging

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from depot_cli.models.events import EventType, MigrationProgress, ProgressEvent

log = logging.getLogger(__name__)


class ProgressManager:
    """
    Turns `ProgressEvent`s into one progress task per operation.

    Output lines are printed dimmed above the bar when `show_output` is set
    (verbose mode); errors and Steam Guard notices are always shown.
    """

    def __init__(self, console: Console, description: str, show_output: bool = False):
        self.console = console
        self.description = description
        self.show_output = show_output
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._task_id: TaskID | None = None
        self.last_percent = 0.0

    async def __aenter__(self) -> "ProgressManager":
        self.progress.start()
        self._task_id = self.progress.add_task(self.description, total=100)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.progress.stop()

    def handle_event(self, event: ProgressEvent) -> None:
        if self._task_id is None:
            return
        if event.type is EventType.PERCENT and event.value is not None:
            self.last_percent = event.value
            self.progress.update(self._task_id, completed=event.value)
        elif event.type is EventType.INFO and event.message:
            self.progress.update(
                self._task_id, description=f"{self.description} [dim]{event.message}[/dim]"
            )
        elif event.type is EventType.STEAM_GUARD:
            self.progress.console.print(f"[bold yellow]🔐 {event.message}[/bold yellow]")
        elif event.type is EventType.ERROR and event.message:
            self.progress.console.print(event.message, style="red", markup=False)
        elif event.type is EventType.OUTPUT and event.message and self.show_output:
            self.progress.console.print(event.message, style="dim", markup=False)

    def handle_migration(self, progress: MigrationProgress) -> None:
        if self._task_id is None:
            return
        total = max(progress.total, 1)
        self.progress.update(
            self._task_id,
            completed=progress.completed / total * 100,
            description=f"{progress.branch}: {progress.step}",
        )
