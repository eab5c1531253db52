"""CLI entrypoint (Typer).

Goal:
- Analyze a repository in-process: `classtally analyze owner/name`
- Query the global leaderboard and the longest class name
- Manage the database and run the API server
"""

from __future__ import annotations

import asyncio
import logging

import typer

from classtally.config import get_settings
from classtally.schemas import (
    AnalysisStatus,
    CompletedEvent,
    ErrorEvent,
    FileProcessedEvent,
    ProgressEvent,
)

app = typer.Typer(help="ClassTally CLI: count utility classes across repositories.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _shutdown() -> None:
    from classtally.acquisition.router import close_acquirer
    from classtally.database.session import close_db

    await close_acquirer()
    await close_db()


async def _analyze(repo: str, top: int) -> bool:
    from classtally.analysis.events import ProgressChannel
    from classtally.analysis.orchestrator import AnalysisOrchestrator

    settings = get_settings()
    channel = ProgressChannel(maxsize=settings.event_queue_size)
    orchestrator = AnalysisOrchestrator(settings=settings)
    task = asyncio.create_task(orchestrator.run(repo, channel))

    succeeded = False
    try:
        async for event in channel:
            if isinstance(event, ProgressEvent):
                if event.status != AnalysisStatus.PARSING:
                    typer.echo(f"[{event.status.value}]")
            elif isinstance(event, FileProcessedEvent):
                typer.echo(f"  ({event.files_processed}/{event.total_files}) {event.file_path}")
            elif isinstance(event, CompletedEvent):
                succeeded = True
                source = "cache" if event.from_cache else "fresh analysis"
                repository = event.repository
                typer.secho(
                    f"{repository.owner}/{repository.name}: {event.total_classes} class instances "
                    f"({len(event.class_counts)} unique, from {source})",
                    fg=typer.colors.GREEN,
                )
                for rank, entry in enumerate(event.top_classes[:top], start=1):
                    typer.echo(f"{rank:>3}. {entry.class_name:<40} {entry.count}")
            elif isinstance(event, ErrorEvent):
                typer.secho(f"Error [{event.code.value}]: {event.message}", fg=typer.colors.RED, err=True)
        await task
    finally:
        await _shutdown()
    return succeeded


@app.command()
def analyze(
    repo: str = typer.Argument(..., help="Repository URL or owner/name shorthand"),
    top: int = typer.Option(20, "--top", "-n", help="Number of top classes to print"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log output"),
):
    """Analyze a repository and print its most used classes."""
    _configure_logging(verbose)
    if not asyncio.run(_analyze(repo, top)):
        raise typer.Exit(code=1)


async def _leaderboard(limit: int) -> None:
    from classtally.database.store import AnalysisStore

    store = AnalysisStore()
    try:
        top_classes = await store.get_global_top_classes(limit)
        stats = await store.get_global_stats()
    finally:
        await _shutdown()

    typer.echo(
        f"{stats.total_repositories} repositories, {stats.total_files} files, "
        f"{stats.total_class_instances} class instances, {stats.unique_classes} unique classes"
    )
    for rank, entry in enumerate(top_classes, start=1):
        typer.echo(f"{rank:>3}. {entry.class_name:<40} {entry.count}")


@app.command()
def leaderboard(
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Number of classes to show"),
):
    """Show the most used classes across every analyzed repository."""
    _configure_logging(False)
    asyncio.run(_leaderboard(limit))


async def _longest() -> None:
    from classtally.database.store import AnalysisStore

    store = AnalysisStore()
    try:
        longest = await store.get_longest_class_name()
    finally:
        await _shutdown()

    if longest is None:
        typer.echo("No classes recorded yet.")
        return
    typer.echo(f"{longest.class_name} ({longest.length} chars) in {longest.owner}/{longest.name}")


@app.command()
def longest():
    """Show the longest class name ever recorded."""
    _configure_logging(False)
    asyncio.run(_longest())


async def _init_db() -> None:
    from classtally.database.session import init_db

    try:
        await init_db()
    finally:
        await _shutdown()


@app.command("init-db")
def init_db_command():
    """Create database tables."""
    _configure_logging(True)
    asyncio.run(_init_db())
    typer.echo("Database initialized.")


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (defaults to settings)"),
    port: int = typer.Option(None, help="Port (defaults to settings)"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "classtally.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload or settings.debug,
    )


if __name__ == "__main__":
    app()
