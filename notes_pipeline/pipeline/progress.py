# notes_pipeline/pipeline/progress.py
"""
Per-stage, per-item progress tracking.

ProgressTracker owns the in-memory CheckpointMetadata for a run and is the
only component that mutates it. Every mutation updates the document and
persists it through CheckpointStore inside one critical section.
"""

import asyncio
import logging
from collections.abc import Callable

from notes_pipeline.errors import InvariantViolation
from notes_pipeline.pipeline.checkpoint import CheckpointStore
from notes_pipeline.pipeline.models import (
    CheckpointMetadata,
    Stage,
    StageProgress,
    StageStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


class ProgressTracker:
    """
    Stage state machine plus settled-id bookkeeping, backed by a CheckpointStore.

    State machine per stage:
        NOT_STARTED --start--> IN_PROGRESS
        IN_PROGRESS --complete--> COMPLETED (terminal)
        IN_PROGRESS --fail--> FAILED
        FAILED --start--> IN_PROGRESS

    All mutations are serialized with one asyncio.Lock and shielded from
    cancellation, so a settlement that has started always reaches disk.
    """

    def __init__(self, store: CheckpointStore) -> None:
        """
        Initialize progress tracker.

        Args:
            store: CheckpointStore used for persistence
        """
        self._store = store
        self._metadata: CheckpointMetadata | None = None
        self._lock = asyncio.Lock()

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def _require(self) -> CheckpointMetadata:
        if self._metadata is None:
            raise InvariantViolation("Checkpoint metadata not initialized")
        return self._metadata

    async def _persist(self) -> None:
        """Stamp and write the document. Caller must hold the lock."""
        metadata = self._require()
        metadata.last_updated = utc_now()
        await asyncio.to_thread(self._store.save, metadata)

    async def _mutate(self, change: Callable[[CheckpointMetadata], bool]) -> None:
        """
        Apply a change and persist it atomically with respect to other mutations.

        If persisting fails the in-memory document is rolled back, so it never
        runs ahead of the checkpoint on disk.

        Args:
            change: Mutates the metadata in place; returns False for a no-op
                (nothing is persisted then)
        """

        async def _critical() -> None:
            async with self._lock:
                snapshot = self._require().model_copy(deep=True)
                try:
                    if change(self._metadata):
                        await self._persist()
                except BaseException:
                    self._metadata = snapshot
                    raise

        await asyncio.shield(_critical())

    async def initialize(self, total_items: int) -> None:
        """
        Load the checkpoint, or create it when none exists.

        A changed item count is corrected in place; settled ids are preserved.

        Args:
            total_items: Number of items in the source collection

        Raises:
            ConfigurationError: If the checkpoint directory cannot be created
            CheckpointError: If an existing checkpoint cannot be read or saved
        """
        if total_items < 0:
            raise ValueError(f"total_items must be >= 0, got {total_items}")

        self._store.ensure_directory()

        async with self._lock:
            loaded = await asyncio.to_thread(self._store.load)
            if loaded is None:
                self._metadata = CheckpointMetadata.create(total_items)
                await self._persist()
                logger.info(f"Created checkpoint for {total_items} items")
                return

            self._metadata = loaded
            if loaded.total_items != total_items:
                logger.warning(
                    f"Item count changed from {loaded.total_items} to {total_items}; "
                    f"keeping recorded progress"
                )
                loaded.total_items = total_items
                await self._persist()

    async def load_existing(self) -> bool:
        """
        Load a saved checkpoint as-is, without creating one.

        Returns:
            True if a checkpoint was loaded, False if none exists

        Raises:
            CheckpointError: If the checkpoint cannot be read
        """
        async with self._lock:
            loaded = await asyncio.to_thread(self._store.load)
            if loaded is None:
                return False
            self._metadata = loaded
            return True

    async def start_stage(self, stage: Stage) -> None:
        """
        Mark a stage IN_PROGRESS. No-op if it already is.

        Raises:
            InvariantViolation: If the stage is COMPLETED
        """

        def _start(metadata: CheckpointMetadata) -> bool:
            progress = metadata.stages[stage]
            match progress.status:
                case StageStatus.IN_PROGRESS:
                    return False
                case StageStatus.COMPLETED:
                    raise InvariantViolation(
                        f"Stage '{stage.value}' is already completed; reset it before re-running",
                        stage=stage.value,
                    )
                case StageStatus.NOT_STARTED | StageStatus.FAILED:
                    progress.status = StageStatus.IN_PROGRESS
                    progress.start_time = utc_now()
                    progress.error = None
                    return True

        await self._mutate(_start)
        logger.info(f"Stage '{stage.value}' in progress", extra={"stage": stage.value})

    async def update_item_progress(self, stage: Stage, item_id: str, success: bool) -> None:
        """
        Record an item as processed (success) or failed.

        Recording an id already in the same set is a no-op.

        Raises:
            InvariantViolation: If the id is already settled with the other outcome
        """

        def _settle(metadata: CheckpointMetadata) -> bool:
            progress = metadata.stages[stage]
            target, other = (
                (progress.processed_ids, progress.failed_ids)
                if success
                else (progress.failed_ids, progress.processed_ids)
            )
            if item_id in other:
                raise InvariantViolation(
                    f"Item {item_id} in stage '{stage.value}' is already settled "
                    f"as {'failed' if success else 'processed'}",
                    stage=stage.value,
                )
            target.add(item_id)
            progress.last_processed_time = utc_now()
            return True

        await self._mutate(_settle)

    async def complete_stage(self, stage: Stage) -> None:
        """
        Mark a stage COMPLETED.

        Completion is asserted by the caller; coverage of all items is not checked.
        """

        def _complete(metadata: CheckpointMetadata) -> bool:
            progress = metadata.stages[stage]
            progress.status = StageStatus.COMPLETED
            progress.completion_time = utc_now()
            return True

        await self._mutate(_complete)
        logger.info(f"Stage '{stage.value}' completed", extra={"stage": stage.value})

    async def fail_stage(self, stage: Stage, message: str) -> None:
        """Mark a stage FAILED with a message. Settled ids are kept."""

        def _fail(metadata: CheckpointMetadata) -> bool:
            progress = metadata.stages[stage]
            progress.status = StageStatus.FAILED
            progress.error = message
            return True

        await self._mutate(_fail)
        logger.error(f"Stage '{stage.value}' failed: {message}", extra={"stage": stage.value})

    async def reset_failed(self, stage: Stage) -> int:
        """
        Forget a stage's failed ids so they are attempted again.

        A COMPLETED or FAILED stage goes back to NOT_STARTED.

        Returns:
            Number of ids that were cleared
        """
        cleared = 0

        def _reset(metadata: CheckpointMetadata) -> bool:
            nonlocal cleared
            progress = metadata.stages[stage]
            cleared = len(progress.failed_ids)
            progress.failed_ids.clear()
            if progress.status in (StageStatus.COMPLETED, StageStatus.FAILED):
                progress.status = StageStatus.NOT_STARTED
                progress.completion_time = None
                progress.error = None
            return True

        await self._mutate(_reset)
        logger.info(f"Cleared {cleared} failed ids for stage '{stage.value}'")
        return cleared

    def pending_items(self, stage: Stage, limit: int) -> list[str]:
        """
        The lowest unsettled ids, ascending.

        Args:
            stage: Stage to inspect
            limit: Maximum number of ids to return
        """
        metadata = self._require()
        progress = metadata.stages[stage]
        pending: list[str] = []
        for index in range(metadata.total_items):
            if len(pending) >= limit:
                break
            item_id = str(index)
            if not progress.is_settled(item_id):
                pending.append(item_id)
        return pending

    def next_pending_item(self, stage: Stage) -> str | None:
        """Lowest id that is neither processed nor failed, or None."""
        pending = self.pending_items(stage, 1)
        return pending[0] if pending else None

    def percent_complete(self, stage: Stage) -> float:
        """
        Processed ids as a percentage of total items. Failed ids do not count.

        Ids at or above total_items (left over after the collection shrank)
        are ignored, so the result stays within 0-100.
        """
        metadata = self._require()
        if metadata.total_items == 0:
            return 0.0
        in_range = sum(
            1
            for item_id in metadata.stages[stage].processed_ids
            if item_id.isdigit() and int(item_id) < metadata.total_items
        )
        return min(in_range / metadata.total_items * 100, 100.0)

    def get_stage_progress(self, stage: Stage) -> StageProgress:
        """Copy of a stage's progress."""
        return self._require().stages[stage].model_copy(deep=True)

    def stage_status(self, stage: Stage) -> StageStatus:
        return self._require().stages[stage].status

    def is_stage_complete(self, stage: Stage) -> bool:
        return self.stage_status(stage) is StageStatus.COMPLETED

    @property
    def total_items(self) -> int:
        return self._require().total_items

    @property
    def metadata(self) -> CheckpointMetadata:
        """Copy of the whole checkpoint document."""
        return self._require().model_copy(deep=True)
