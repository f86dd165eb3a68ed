# notes_pipeline/cli.py
"""
CLI interface for notes-pipeline.

Thin presentation layer over PipelineLifecycle and ProgressTracker.
"""

import asyncio
from pathlib import Path

import typer

from notes_pipeline.config.loader import load_config
from notes_pipeline.config.schema import NotesPipelineConfig
from notes_pipeline.errors import ConfigurationError, PipelineError
from notes_pipeline.pipeline.models import Stage, StageStatus

app = typer.Typer(
    name="notes-pipeline",
    help="Resumable notes processing: export, enrich, cluster, merge.",
    no_args_is_help=True,
)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config YAML")


def _run(coro):
    """Run async function from sync CLI context."""
    return asyncio.run(coro)


def _load(config_path: Path | None) -> NotesPipelineConfig:
    from notes_pipeline.logging_config import configure_logging

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    configure_logging(config.logging.level)
    return config


def _parse_stage(value: str) -> Stage:
    try:
        return Stage(value)
    except ValueError:
        choices = ", ".join(stage.value for stage in Stage)
        raise typer.BadParameter(f"'{value}' is not a stage (choose from {choices})")


def _tracker_for(config: NotesPipelineConfig):
    from notes_pipeline.pipeline.checkpoint import CheckpointStore
    from notes_pipeline.pipeline.progress import ProgressTracker
    from notes_pipeline.stages.base import DataLayout

    layout = DataLayout(Path(config.storage.data_dir).expanduser())
    return ProgressTracker(CheckpointStore(layout.checkpoint_path))


def _status_color(status: StageStatus) -> str:
    """Return rich style for a stage status."""
    colors = {
        StageStatus.NOT_STARTED: "dim",
        StageStatus.IN_PROGRESS: "yellow",
        StageStatus.COMPLETED: "green",
        StageStatus.FAILED: "red",
    }
    return colors[status]


@app.command()
def run(
    stage: str = typer.Option(None, "--stage", "-s", help="Run only this stage"),
    source: Path = typer.Option(
        None, "--source", help="Directory of .md/.txt notes (required for the first run)"
    ),
    config_path: Path = CONFIG_OPTION,
):
    """Run all enabled stages, resuming from the checkpoint. Ctrl+C stops gracefully."""
    from notes_pipeline.background.lifecycle import PipelineLifecycle

    only = _parse_stage(stage) if stage else None
    config = _load(config_path)

    async def _run_pipeline():
        lifecycle = PipelineLifecycle(config, source=source)
        try:
            await lifecycle.startup()
            return await lifecycle.run(only)
        finally:
            await lifecycle.shutdown()

    try:
        results = _run(_run_pipeline())
    except PipelineError as e:
        typer.echo(typer.style(f"Error: {e}", fg=typer.colors.RED), err=True)
        raise typer.Exit(1)

    interrupted = False
    for result in results:
        if result.skipped:
            typer.echo(f"{result.stage.value}: already completed")
            continue

        typer.echo(
            f"{result.stage.value}: {result.processed_count} processed, "
            f"{len(result.failed)} failed ({result.elapsed_seconds:.1f}s)"
        )
        for item_id, message in result.failed:
            typer.echo(typer.style(f"  ✗ {item_id}: {message}", fg=typer.colors.RED))
        interrupted = interrupted or result.interrupted

    if interrupted:
        typer.echo("Interrupted. Run again to resume.", err=True)
        raise typer.Exit(130)


@app.command()
def status(config_path: Path = CONFIG_OPTION):
    """Show per-stage progress from the checkpoint."""
    from rich.console import Console
    from rich.table import Table

    from notes_pipeline.pipeline.report import generate_progress_report

    config = _load(config_path)
    tracker = _tracker_for(config)

    try:
        found = _run(tracker.load_existing())
    except PipelineError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not found:
        typer.echo("No checkpoint found.")
        return

    report = generate_progress_report(tracker)

    table = Table(title=f"{tracker.total_items} notes")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Elapsed", justify="right")
    table.add_column("ETA", justify="right")
    table.add_column("Error", style="red")

    for info in report.stages:
        table.add_row(
            info.stage.value,
            f"[{_status_color(info.status)}]{info.status.value}[/]",
            str(info.processed_count),
            str(info.failed_count),
            f"{info.percent_complete:.1f}",
            info.time_elapsed or "",
            info.estimated_time_remaining or "",
            info.error or "",
        )

    console = Console()
    console.print(table)
    console.print(f"Overall: {report.overall_progress:.1f}%")


@app.command()
def reset(
    config_path: Path = CONFIG_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Delete the checkpoint so the next run starts from scratch."""
    config = _load(config_path)
    tracker = _tracker_for(config)

    if not yes:
        typer.confirm(f"Delete checkpoint {tracker.store.path}?", abort=True)

    try:
        removed = tracker.store.clear()
    except PipelineError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo("Checkpoint deleted." if removed else "No checkpoint found.")


@app.command("retry-failed")
def retry_failed(
    stage: str = typer.Argument(..., help="Stage whose failed notes should be retried"),
    config_path: Path = CONFIG_OPTION,
):
    """Clear a stage's failed notes so the next run attempts them again."""
    target = _parse_stage(stage)
    config = _load(config_path)
    tracker = _tracker_for(config)

    async def _reset():
        if not await tracker.load_existing():
            return None
        return await tracker.reset_failed(target)

    try:
        cleared = _run(_reset())
    except PipelineError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if cleared is None:
        typer.echo("No checkpoint found.", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"Cleared {cleared} failed note(s) for {target.value}. "
        f"Run 'notes-pipeline run' to retry them."
    )
