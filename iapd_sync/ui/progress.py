"""Terminal progress helpers with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    filesize,
)
from rich.status import Status
from rich.text import Text


@dataclass
class ProgressState:
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0
    current: str | None = None


class RateColumn(ProgressColumn):
    """Items handled per second, e.g. ``1.0 item/s``."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        if speed < 1000:
            return Text(f"{speed:.1f} item/s", style="progress.percentage")
        unit, suffix = filesize.pick_unit_and_suffix(int(speed), ["", "K", "M", "G", "T"], 1000)
        return Text(f"{speed / unit:.1f}{suffix} item/s", style="progress.percentage")


class ProgressReporter:
    """Render one phase's progress and keep its counters.

    Outside an interactive terminal the reporter stays silent and only counts.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None
        self._label = "iapd"

    def start(self, total: int, label: str | None = None, completed: int = 0) -> None:
        self.state = ProgressState(total=total)
        if label:
            self._label = label
        if not self.enabled:
            return
        if self._console is None:
            self._console = Console()
        if not self._console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<12}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            TextColumn("[green]✓{task.fields[success]:>4}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>4}", justify="right"),
            TextColumn("[yellow]↺{task.fields[skipped]:>4}", justify="right"),
            TextColumn("[dim]{task.fields[current]}", justify="left"),
            refresh_per_second=8,
            expand=True,
            transient=True,
            console=self._console,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            # another live display owns the console
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            self._label,
            total=total,
            completed=completed,
            label=self._label,
            success=0,
            failed=0,
            skipped=0,
            current="",
        )

    def advance(
        self,
        success: bool = False,
        failed: bool = False,
        skipped: bool = False,
        current: str | None = None,
    ) -> None:
        if not self.state:
            raise RuntimeError("ProgressReporter.start must be called before advance")
        if current:
            self.state.current = current
        if success:
            self.state.success += 1
        if failed:
            self.state.failed += 1
        if skipped:
            self.state.skipped += 1
        if self._progress is not None and self._task_id is not None:
            display = self.state.current or ""
            if len(display) > 40:
                display = display[:37] + "..."
            self._progress.update(
                self._task_id,
                advance=1,
                success=self.state.success,
                failed=self.state.failed,
                skipped=self.state.skipped,
                current=display,
            )

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._task_id = None

    def summary(self) -> dict[str, int]:
        if not self.state:
            return {"success": 0, "failed": 0, "skipped": 0}
        return {
            "success": self.state.success,
            "failed": self.state.failed,
            "skipped": self.state.skipped,
        }


class ProgressActivity:
    """Indeterminate activity indicator using a Rich status spinner."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        self._status: Status | None = None

    def start(self, message: str) -> None:
        if not self.enabled or self._status is not None or not self.console.is_terminal:
            return
        self._status = self.console.status(message)
        self._status.start()

    def close(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


__all__ = ["ProgressActivity", "ProgressReporter", "ProgressState", "RateColumn"]
