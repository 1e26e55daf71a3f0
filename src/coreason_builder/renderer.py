# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.text import Text

from coreason_builder.channel import TraceChannel
from coreason_builder.models.solve import LogStream, SolveStatus, Vertex, VertexLog, VertexStatus


def _build_progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    )


class ProgressRenderer:
    """Paints solve events to the terminal as live progress.

    Each vertex gets one progress line; vertex statuses (layer pulls,
    context transfers) get an indented line under it. Vertex logs are
    printed above the live display.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)
        self.progress = _build_progress(self.console)
        self._tasks: dict[str, TaskID] = {}
        self._failed: set[str] = set()

    async def run(self, channel: TraceChannel) -> None:
        """Render events until the channel is closed."""
        with self.progress:
            async for event in channel:
                self.update(event)

    def update(self, event: SolveStatus) -> None:
        for vertex in event.vertexes:
            self._update_vertex(vertex)
        for status in event.statuses:
            self._update_status(status)
        for log in event.logs:
            self._print_log(log)
        self.progress.refresh()

    def _task(self, key: str, description: str) -> TaskID:
        task_id = self._tasks.get(key)
        if task_id is None:
            task_id = self.progress.add_task(description, total=None)
            self._tasks[key] = task_id
        return task_id

    def _update_vertex(self, vertex: Vertex) -> None:
        name = escape(vertex.name or vertex.digest)
        description = f"[cyan]CACHED[/] {name}" if vertex.cached else name
        task_id = self._task(vertex.digest, description)
        self.progress.update(task_id, description=description)

        if vertex.error and vertex.digest not in self._failed:
            self._failed.add(vertex.digest)
            self.progress.update(task_id, description=f"[red]ERROR[/] {name}")
            self.progress.console.print(Text(f"{vertex.name}: {vertex.error}", style="red"))
        if vertex.completed is not None or vertex.cached:
            self.progress.update(task_id, total=1, completed=1)

    def _update_status(self, status: VertexStatus) -> None:
        description = f"  {escape(status.name or status.id)}"
        task_id = self._task(f"{status.vertex}:{status.id}", description)
        total = status.total or None
        self.progress.update(task_id, total=total, completed=status.current)
        if status.completed is not None:
            self.progress.update(task_id, total=total or 1, completed=total or 1)

    def _print_log(self, log: VertexLog) -> None:
        text = log.data.decode("utf-8", errors="replace").rstrip("\n")
        if not text:
            return
        style = "red" if log.stream == LogStream.STDERR else "dim"
        self.progress.console.print(Text(text, style=style))
