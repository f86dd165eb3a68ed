# notes_pipeline/pipeline/report.py
"""Human-readable progress reporting over a ProgressTracker."""

from dataclasses import dataclass
from datetime import datetime

from notes_pipeline.pipeline.models import Stage, StageStatus, utc_now
from notes_pipeline.pipeline.progress import ProgressTracker

STATUS_LABELS = {
    StageStatus.NOT_STARTED: "Not Started",
    StageStatus.IN_PROGRESS: "In Progress",
    StageStatus.COMPLETED: "Completed",
    StageStatus.FAILED: "Failed",
}


def format_duration(seconds: float) -> str:
    """
    Format a duration for display.

    Examples:
        0.25 -> "250ms", 42 -> "42s", 125 -> "2m 5s", 3725 -> "1h 2m 5s"
    """
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class StageProgressInfo:
    """Snapshot of one stage for display."""

    stage: Stage
    status: StageStatus
    processed_count: int
    failed_count: int
    total_items: int
    percent_complete: float
    time_elapsed: str | None = None
    estimated_time_remaining: str | None = None
    error: str | None = None


@dataclass
class ProgressReport:
    """
    Snapshot of the whole run.

    Attributes:
        stages: One entry per stage, in processing order
        overall_progress: Mean of the stages' percent_complete
        start_time: When the checkpoint was created
        last_update_time: When the checkpoint was last written
    """

    stages: list[StageProgressInfo]
    overall_progress: float
    start_time: datetime
    last_update_time: datetime


def generate_progress_report(
    tracker: ProgressTracker, now: datetime | None = None
) -> ProgressReport:
    """
    Build a ProgressReport from the tracker's current state.

    Elapsed time runs from a stage's start to its completion (or to now while
    unfinished). In-progress stages with at least one processed item get an
    ETA extrapolated from the time per processed item.
    """
    now = now or utc_now()
    metadata = tracker.metadata
    infos: list[StageProgressInfo] = []

    for stage in Stage:
        progress = metadata.stages[stage]
        processed = len(progress.processed_ids)
        info = StageProgressInfo(
            stage=stage,
            status=progress.status,
            processed_count=processed,
            failed_count=len(progress.failed_ids),
            total_items=metadata.total_items,
            percent_complete=tracker.percent_complete(stage),
            error=progress.error,
        )

        if progress.start_time is not None:
            end = progress.completion_time or now
            elapsed = max((end - progress.start_time).total_seconds(), 0.0)
            info.time_elapsed = format_duration(elapsed)

            if progress.status is StageStatus.IN_PROGRESS and processed > 0:
                remaining = max(metadata.total_items - processed, 0)
                info.estimated_time_remaining = format_duration(elapsed / processed * remaining)

        infos.append(info)

    overall = sum(info.percent_complete for info in infos) / len(infos)
    return ProgressReport(
        stages=infos,
        overall_progress=overall,
        start_time=metadata.created_at,
        last_update_time=metadata.last_updated,
    )


def stage_progress_string(tracker: ProgressTracker, stage: Stage) -> str:
    """One-line summary, e.g. "enrichment: In Progress - 3/10 processed (30.0%) [1 failed]"."""
    progress = tracker.get_stage_progress(stage)
    processed = len(progress.processed_ids)
    failed = len(progress.failed_ids)
    line = (
        f"{stage.value}: {STATUS_LABELS[progress.status]} - "
        f"{processed}/{tracker.total_items} processed "
        f"({tracker.percent_complete(stage):.1f}%)"
    )
    if failed:
        line += f" [{failed} failed]"
    return line
