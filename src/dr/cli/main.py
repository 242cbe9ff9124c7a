"""
CLI for the research pipelines.

Commands:
    dr fast TOPIC - Collect, analyze and write a digest report
    dr deep TOPIC - Run deep research (optionally with article review)
    dr outline TOPIC - Generate an outline to edit before a deep run
    dr progress PROJECT - Show the latest deep research snapshot
    dr config - Show current configuration
    dr version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any, Optional

import orjson
import typer
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from dr import __version__
from dr.cli.progress import DEEP_PHASES, FAST_PHASES, RunProgress
from dr.config import Settings, clear_settings_cache, get_settings
from dr.coordinator.service import ResearchService
from dr.events import Event, EventType
from dr.exceptions import DRError
from dr.logging import get_console, setup_logging
from dr.research.outline import normalize_outline
from dr.topic import TopicConfig
from dr.types import Outline, ReviewDecisions

app = typer.Typer(
    name="dr",
    help="Research orchestration - news digests and deep research reports",
    no_args_is_help=True,
)

console = get_console()


def _load_settings(dry_run: bool = False) -> Settings:
    """Settings from the environment, or exit with a hint."""
    try:
        clear_settings_cache()
        settings = Settings(DRY_RUN=True) if dry_run else get_settings()
    except Exception as e:
        console.print(f"[red]Error:[/red] Configuration is invalid: {e}")
        console.print("Run 'dr config' to see what's missing.")
        raise typer.Exit(1)
    settings.ensure_directories()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    return settings


def _load_topic(path: Path, project_id: str | None) -> TopicConfig:
    try:
        return TopicConfig.load(path, project_id=project_id)
    except DRError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _load_outline(path: Path) -> Outline:
    try:
        return normalize_outline(orjson.loads(path.read_bytes()))
    except (OSError, orjson.JSONDecodeError, DRError) as e:
        console.print(f"[red]Error:[/red] Cannot load outline {path}: {e}")
        raise typer.Exit(1)


class TeeSink:
    """Forwards each event to several sinks in order."""

    def __init__(self, *sinks: Any) -> None:
        self.sinks = sinks

    async def emit(self, event: Event) -> None:
        for sink in self.sinks:
            await sink.emit(event)


class CliReviewer:
    """EventSink that answers article review requests at the terminal."""

    def __init__(self, service: ResearchService, progress: RunProgress) -> None:
        self.service = service
        self.progress = progress
        self._tasks: set[asyncio.Task[None]] = set()

    async def emit(self, event: Event) -> None:
        if event.type is EventType.ARTICLES_READY:
            # The run registers its wait right after this emit returns
            task = asyncio.create_task(self._review(event.run_id, event.data["sections"]))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _review(self, report_id: str, sections: dict[str, list[dict[str, Any]]]) -> None:
        self.progress.pause()
        decisions: ReviewDecisions = {}
        try:
            for section_id, articles in sections.items():
                table = Table(title=f"Section: {section_id}", show_header=True)
                table.add_column("#", justify="right", style="dim")
                table.add_column("Title", style="cyan")
                table.add_column("Source", style="green")
                for i, article in enumerate(articles, start=1):
                    table.add_row(str(i), article["title"], article.get("source_name", ""))
                console.print(table)

                answer = await asyncio.to_thread(
                    Prompt.ask, "Exclude which numbers (comma separated, blank for none)",
                    default="", console=console,
                )
                excluded = {int(p) for p in answer.replace(" ", "").split(",") if p.isdigit()}
                decisions[section_id] = [
                    a["url"] for i, a in enumerate(articles, start=1) if i in excluded
                ]
        finally:
            self.progress.resume()

        if not self.service.submit_review(report_id, decisions):
            console.print("[yellow]Review was no longer pending.[/yellow]")


@app.command()
def fast(
    topic_file: Annotated[Path, typer.Argument(help="Topic configuration (YAML or JSON)")],
    project_id: Annotated[
        Optional[str], typer.Option("--project", "-p", help="Project ID (default: file name)")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Use canned generations")
    ] = False,
) -> None:
    """Collect news, analyze it in batches and write the digest report."""
    settings = _load_settings(dry_run)
    topic = _load_topic(topic_file, project_id)

    async def run() -> Any:
        service = ResearchService(settings)
        await service.init()
        try:
            with RunProgress(console, topic.report_title, FAST_PHASES) as progress:
                result = await service.start_fast(topic, sink=progress)
            report = (
                await service.project(topic.project_id).get_report(result.report_id)
                if result.report_id
                else None
            )
            return result, report
        finally:
            await service.close()

    result, report = asyncio.run(run())
    if not result.succeeded:
        console.print(f"\n[red]Error:[/red] {result.error}")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]Articles collected:[/bold] {result.articles_collected}\n"
            f"[bold]Articles analyzed:[/bold] {result.articles_analyzed}\n"
            f"[bold]Report:[/bold] {result.report_id}",
            title=f"[bold green]{topic.report_title}[/bold green]",
            border_style="green",
        )
    )
    if report:
        out = settings.DATA_DIR / topic.project_id / f"{result.report_id}.md"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(report, encoding="utf-8")
        console.print(f"\n[bold]Report saved to:[/bold] {out}")


@app.command()
def deep(
    topic_file: Annotated[Path, typer.Argument(help="Topic configuration (YAML or JSON)")],
    project_id: Annotated[
        Optional[str], typer.Option("--project", "-p", help="Project ID (default: file name)")
    ] = None,
    outline_file: Annotated[
        Optional[Path], typer.Option("--outline", help="Edited outline JSON from 'dr outline'")
    ] = None,
    review: Annotated[
        bool, typer.Option("--review", help="Review candidate articles before analysis")
    ] = False,
    blacklist: Annotated[
        Optional[list[str]], typer.Option("--blacklist", help="Exclude articles mentioning this")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Use canned generations")
    ] = False,
) -> None:
    """Run deep research and write the merged report."""
    settings = _load_settings(dry_run)
    topic = _load_topic(topic_file, project_id)
    outline = _load_outline(outline_file) if outline_file else None

    async def run() -> Any:
        service = ResearchService(settings)
        await service.init()
        try:
            with RunProgress(console, topic.report_title, DEEP_PHASES) as progress:
                sink: Any = progress
                if review:
                    sink = TeeSink(progress, CliReviewer(service, progress))
                return await service.start_deep(
                    topic,
                    sink=sink,
                    outline=outline,
                    review=review,
                    keyword_blacklist=blacklist or (),
                )
        finally:
            await service.close()

    result = asyncio.run(run())
    if not result.succeeded:
        console.print(f"\n[red]Error:[/red] {result.error}")
        raise typer.Exit(1)

    out = settings.DATA_DIR / topic.project_id / f"{result.report_id}.md"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(result.merged_markdown or "", encoding="utf-8")

    failed = ", ".join(result.failed_sections) or "none"
    console.print(
        Panel(
            f"[bold]Report ID:[/bold] {result.report_id}\n"
            f"[bold]Sections:[/bold] {len(result.completed_sections)} complete\n"
            f"[bold]Failed:[/bold] {failed}",
            title=f"[bold green]{topic.report_title}[/bold green]",
            border_style="green",
        )
    )
    console.print(f"\n[bold]Report saved to:[/bold] {out}")


@app.command()
def outline(
    topic_file: Annotated[Path, typer.Argument(help="Topic configuration (YAML or JSON)")],
    output: Annotated[
        Path, typer.Option("--output", "-o", help="Where to write the outline JSON")
    ] = Path("outline.json"),
    regenerate: Annotated[
        Optional[str],
        typer.Option("--regenerate", help="Regenerate one section of the existing outline"),
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Use canned generations")
    ] = False,
) -> None:
    """Generate an outline to edit, or regenerate one of its sections."""
    settings = _load_settings(dry_run)
    topic = _load_topic(topic_file, None)
    existing = _load_outline(output) if regenerate else None

    async def run() -> Outline:
        service = ResearchService(settings)
        try:
            if existing is not None and regenerate is not None:
                section = await service.regenerate_section(topic, existing, regenerate)
                return existing.with_section(section)
            return await service.generate_outline(topic)
        finally:
            close = getattr(service.generator, "close", None)
            if close is not None:
                await close()

    try:
        result = asyncio.run(run())
    except DRError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    output.write_bytes(orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2))

    table = Table(title=result.title, show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Section", style="cyan")
    table.add_column("Queries", style="green")
    for section in result.sections:
        table.add_row(section.id, section.title, "; ".join(section.search_queries))
    console.print(table)
    console.print(f"\n[bold]Outline saved to:[/bold] {output}")


@app.command()
def progress(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
) -> None:
    """Show the latest deep research snapshot of a project."""
    settings = _load_settings(dry_run=True)

    async def run() -> dict[str, Any]:
        service = ResearchService(settings)
        await service.store.init()
        try:
            return await service.get_progress(project_id)
        finally:
            await service.store.close()

    snapshot = asyncio.run(run())
    if snapshot["report_id"] is None:
        console.print(f"[yellow]No deep research runs for {project_id}.[/yellow]")
        return

    table = Table(title=f"{snapshot['report_id']} ({snapshot['phase']})", show_header=True)
    table.add_column("Section", style="cyan")
    table.add_column("Status")
    table.add_column("Sources", justify="right")
    for section in snapshot["sections"]:
        table.add_row(section["title"], section["status"], str(section["sources_count"]))
    console.print(table)
    if snapshot.get("error"):
        console.print(f"[red]Error:[/red] {snapshot['error']}")


@app.command()
def config() -> None:
    """Show current configuration with API keys redacted."""
    console.print()
    console.print("[bold]Research Configuration[/bold]")
    console.print()

    try:
        clear_settings_cache()
        settings = get_settings()
    except Exception:
        console.print("[red]Configuration is invalid or incomplete.[/red]")
        console.print()
        console.print("Set ANTHROPIC_API_KEY, or DRY_RUN=true for canned generations.")
        console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in settings.redacted_display().items():
        table.add_row(key, str(value) if value is not None else "[dim]not set[/dim]")
    console.print(table)
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"dr-research version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
