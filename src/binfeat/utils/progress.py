"""Rich progress display for a batch of binaries, rendered on stderr."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from binfeat.utils.formatters import err_console


class BatchProgress:
    """One task tracking finished binaries, with a running failure count."""

    def __init__(self, progress: Progress, task_id: int) -> None:
        self._progress = progress
        self._task_id = task_id
        self.failed = 0

    def advance(self, binary: str, failed: bool = False) -> None:
        if failed:
            self.failed += 1
        self._progress.update(self._task_id, advance=1, failed=self.failed, current=binary)


@contextmanager
def batch_progress(
    description: str, total: int, disable: bool = False
) -> Generator[BatchProgress, None, None]:
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("[red]{task.fields[failed]} failed"),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        TextColumn("[dim]{task.fields[current]}"),
        console=err_console,
        disable=disable,
    )
    with progress:
        task_id = progress.add_task(description, total=total, failed=0, current="")
        yield BatchProgress(progress, task_id)
