# notes_pipeline/pipeline/__init__.py
"""
Resumable pipeline engine.

Exports:
    - PipelineOrchestrator: Runs stages to completion with checkpointed progress
    - ProgressTracker: Stage state machine and settled-id bookkeeping
    - CheckpointStore: Atomic JSON persistence of the checkpoint document
    - BoundedBatchRunner: Bounded-parallel execution of item workers
"""

from notes_pipeline.pipeline.checkpoint import CheckpointStore, atomic_write_json
from notes_pipeline.pipeline.models import (
    CheckpointMetadata,
    Stage,
    StageProgress,
    StageStatus,
)
from notes_pipeline.pipeline.orchestrator import (
    PipelineOrchestrator,
    StageRunConfig,
    StageRunResult,
)
from notes_pipeline.pipeline.progress import ProgressTracker
from notes_pipeline.pipeline.report import (
    ProgressReport,
    StageProgressInfo,
    format_duration,
    generate_progress_report,
    stage_progress_string,
)
from notes_pipeline.pipeline.runner import (
    BatchResult,
    BoundedBatchRunner,
    ItemOutcome,
    ItemWorker,
)

__all__ = [
    "BatchResult",
    "BoundedBatchRunner",
    "CheckpointMetadata",
    "CheckpointStore",
    "ItemOutcome",
    "ItemWorker",
    "PipelineOrchestrator",
    "ProgressReport",
    "ProgressTracker",
    "Stage",
    "StageProgress",
    "StageProgressInfo",
    "StageRunConfig",
    "StageRunResult",
    "StageStatus",
    "atomic_write_json",
    "format_duration",
    "generate_progress_report",
    "stage_progress_string",
]
