"""Rich live progress display for pipeline runs. Doubles as an EventSink."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dr.events import Event, EventType
from dr.types import DeepPhase, FastPhase

FAST_PHASES = (FastPhase.COLLECTING, FastPhase.ANALYZING, FastPhase.REPORTING)
DEEP_PHASES = (
    DeepPhase.OUTLINE,
    DeepPhase.RESEARCHING,
    DeepPhase.REVIEWING_ARTICLES,
    DeepPhase.COMPILING,
    DeepPhase.PDF,
)


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    return f"{minutes // 60}h {minutes % 60}m"


@dataclass
class PhaseInfo:
    """Display state of one pipeline phase."""

    name: str
    status: str = "pending"  # pending, running, complete, error
    detail: str = ""
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def duration_str(self) -> str:
        if self.started_at is None:
            return ""
        return format_duration((self.completed_at or time.time()) - self.started_at)


class RunProgress:
    """Live panel of phases, deep research sections and the latest message."""

    STATUS_ICONS = {
        "pending": "[dim]...[/dim]",
        "running": "[yellow]...[/yellow]",
        "searching": "[yellow]SRCH[/yellow]",
        "analyzing": "[yellow]ANLZ[/yellow]",
        "deepening": "[yellow]DEEP[/yellow]",
        "refining": "[yellow]RFNE[/yellow]",
        "complete": "[green]OK[/green]",
        "error": "[red]ERR[/red]",
    }

    def __init__(self, console: Console, title: str, phases: Sequence[Any]) -> None:
        self.console = console
        self.title = title
        self.started_at = time.time()
        self.phases: dict[str, PhaseInfo] = {
            p.value: PhaseInfo(name=p.value.replace("_", " ").title()) for p in phases
        }
        self.sections: dict[str, tuple[str, str, str]] = {}
        self.current_phase: str | None = None
        self.last_message = ""
        self.errors: list[str] = []
        self.is_complete = False
        self.is_failed = False
        self._live: Live | None = None

    # ============== EventSink ==============

    async def emit(self, event: Event) -> None:
        self.apply(event)

    def apply(self, event: Event) -> None:
        """Fold one event into the display state."""
        data = event.data
        if event.type is EventType.PHASE:
            self._enter_phase(data.get("phase", ""))
        elif event.type is EventType.OUTLINE:
            for section in data["outline"].get("sections", ()):
                self.sections[section["id"]] = (section["title"], "pending", "")
        elif event.type is EventType.SECTION_STATUS:
            section_id = data["section_id"]
            title = self.sections.get(section_id, (section_id, "", ""))[0]
            self.sections[section_id] = (title, data["status"], data.get("message", ""))
        elif event.type is EventType.ERROR:
            self.errors.append(event.message)

        if event.message:
            self.last_message = event.message
        self.refresh()

    def _enter_phase(self, phase: str) -> None:
        now = time.time()
        if self.current_phase in self.phases and self.current_phase != phase:
            previous = self.phases[self.current_phase]
            previous.status = "complete"
            previous.completed_at = now

        if phase == "complete":
            self.is_complete = True
        elif phase == "error":
            self.is_failed = True
            if self.current_phase in self.phases:
                self.phases[self.current_phase].status = "error"
        elif phase in self.phases:
            info = self.phases[phase]
            info.status = "running"
            if info.started_at is None:
                info.started_at = now
            info.completed_at = None
            self.current_phase = phase

    # ============== Rendering ==============

    def _build_display(self) -> Panel:
        phases = Table(show_header=False, box=None, padding=(0, 1))
        phases.add_column("Status", width=5)
        phases.add_column("Phase", width=20)
        phases.add_column("Time", width=8, justify="right", style="dim")
        for info in self.phases.values():
            style = {"running": "bold yellow", "complete": "green", "error": "red"}.get(
                info.status, "dim"
            )
            phases.add_row(
                self.STATUS_ICONS.get(info.status, ""),
                Text(info.name, style=style),
                info.duration_str,
            )

        parts: list[Any] = [phases]
        if self.sections:
            sections = Table(show_header=True, box=None, padding=(0, 1))
            sections.add_column("", width=5)
            sections.add_column("Section", style="cyan")
            sections.add_column("Detail", style="dim")
            for title, status, message in self.sections.values():
                detail = message[:45] + "..." if len(message) > 45 else message
                sections.add_row(self.STATUS_ICONS.get(status, status), title, detail)
            parts += [Text(""), sections]

        footer = Text()
        footer.append("Elapsed: ", style="dim")
        footer.append(format_duration(time.time() - self.started_at), style="cyan")
        if self.last_message:
            footer.append("  |  ", style="dim")
            footer.append(self.last_message[:80])
        parts += [Text(""), footer]

        if self.is_complete:
            title, border = f"[bold green]{self.title} complete[/bold green]", "green"
        elif self.is_failed:
            title, border = f"[bold red]{self.title} failed[/bold red]", "red"
        else:
            title, border = f"[bold cyan]{self.title}[/bold cyan]", "cyan"
        return Panel(Group(*parts), title=title, border_style=border)

    def refresh(self) -> None:
        if self._live:
            self._live.update(self._build_display())

    def pause(self) -> None:
        """Stop live rendering so the terminal can take input."""
        if self._live:
            self._live.stop()

    def resume(self) -> None:
        if self._live:
            self._live.start()

    def __enter__(self) -> RunProgress:
        self._live = Live(
            self._build_display(),
            console=self.console,
            refresh_per_second=4,
            get_renderable=self._build_display,
        )
        self._live.__enter__()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._live:
            self._live.update(self._build_display())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None
