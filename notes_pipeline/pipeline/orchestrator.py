# notes_pipeline/pipeline/orchestrator.py
"""
Stage orchestration.

Drives one stage at a time to completion: pulls chunks of pending item ids
from the ProgressTracker, runs them through the BoundedBatchRunner and records
each outcome as it settles. Stages resume from the lowest unsettled id.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from notes_pipeline.errors import (
    Cancelled,
    FatalError,
    InvariantViolation,
    PipelineError,
    StageFailure,
)
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.progress import ProgressTracker
from notes_pipeline.pipeline.runner import (
    BoundedBatchRunner,
    ItemOutcome,
    ItemWorker,
    describe_error,
)

logger = logging.getLogger(__name__)

StageHook = Callable[[Stage], Awaitable[None]]


class StageRunConfig(BaseModel):
    """Chunking and concurrency for one stage run."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=5, ge=1, le=20)
    concurrency_limit: int = Field(default=3, ge=1, le=5)


@dataclass
class StageRunResult:
    """
    Outcome of one run of one stage.

    Counts cover this run only; ids settled by earlier runs are not repeated.

    Attributes:
        stage: The stage that ran
        processed_count: Items processed successfully in this run
        failed: (item_id, error message) for items that failed in this run
        interrupted: True if cancellation stopped the stage before it finished
        skipped: True if the stage was already completed and did not run
        elapsed_seconds: Wall time of the run
    """

    stage: Stage
    processed_count: int = 0
    failed: list[tuple[str, str]] = field(default_factory=list)
    interrupted: bool = False
    skipped: bool = False
    elapsed_seconds: float = 0.0


class PipelineOrchestrator:
    """
    Runs stage workers over every item with checkpointed progress.

    Workflow per stage:
    1. start_stage (resumes an IN_PROGRESS or FAILED stage)
    2. Pull up to batch_size pending ids, run them with bounded concurrency
    3. Record each outcome as it settles; re-query pending ids
    4. Run the optional finalize hook, then complete_stage

    Example:
        orchestrator = PipelineOrchestrator(tracker, BoundedBatchRunner(cancel))
        result = await orchestrator.run_stage(Stage.ENRICHMENT, worker, StageRunConfig())
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        runner: BoundedBatchRunner | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            tracker: Initialized ProgressTracker for the run
            runner: Batch runner (defaults to one sharing cancel_event)
            cancel_event: When set, no new chunks are submitted
        """
        self._tracker = tracker
        self._cancel_event = cancel_event
        self._runner = runner or BoundedBatchRunner(cancel_event)

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _reporting(self, stage: Stage, worker: ItemWorker) -> ItemWorker:
        """Wrap worker so every settled outcome is recorded before it returns."""

        async def _wrapped(item_id: str) -> ItemOutcome:
            try:
                outcome = await worker(item_id)
            except (FatalError, Cancelled):
                raise
            except Exception as e:
                outcome = ItemOutcome.failed(describe_error(e))

            if not outcome.success:
                logger.warning(
                    f"[{stage.value}] item {item_id} failed: {outcome.error}",
                    extra={"stage": stage.value, "item_id": item_id},
                )
            await self._tracker.update_item_progress(stage, item_id, outcome.success)
            return outcome

        return _wrapped

    async def run_stage(
        self,
        stage: Stage,
        worker: ItemWorker,
        config: StageRunConfig | None = None,
        finalize: StageHook | None = None,
    ) -> StageRunResult:
        """
        Run one stage until no item is pending.

        Args:
            stage: Stage to run
            worker: Per-item coroutine function
            config: Chunk size and concurrency (defaults to StageRunConfig())
            finalize: Runs once all items are settled, before the stage completes

        Returns:
            StageRunResult (interrupted=True if cancellation stopped the run)

        Raises:
            InvariantViolation: If the stage is already completed
            StageFailure: On any non-item error; the stage is marked FAILED first
        """
        config = config or StageRunConfig()
        if self._tracker.is_stage_complete(stage):
            raise InvariantViolation(
                f"Stage '{stage.value}' is already completed", stage=stage.value
            )

        started = time.monotonic()
        result = StageRunResult(stage=stage)
        log_context = {"stage": stage.value}
        reporting_worker = self._reporting(stage, worker)

        try:
            await self._tracker.start_stage(stage)

            while True:
                if self._cancelled():
                    result.interrupted = True
                    break

                chunk = self._tracker.pending_items(stage, config.batch_size)
                if not chunk:
                    break

                batch = await self._runner.run(
                    chunk, config.concurrency_limit, reporting_worker
                )
                result.processed_count += len(batch.succeeded)
                result.failed.extend(
                    (item_id, batch.failed[item_id]) for item_id in chunk if item_id in batch.failed
                )

                if batch.settled == 0:
                    if self._cancelled():
                        result.interrupted = True
                        break
                    raise InvariantViolation(
                        f"Chunk {chunk} of stage '{stage.value}' settled no items",
                        stage=stage.value,
                    )

                logger.info(
                    f"[{stage.value}] chunk done: {len(batch.succeeded)} ok, "
                    f"{len(batch.failed)} failed "
                    f"({self._tracker.percent_complete(stage):.1f}% processed)",
                    extra=log_context,
                )

            if result.interrupted:
                logger.info(
                    f"Stage '{stage.value}' interrupted; progress is saved", extra=log_context
                )
            else:
                if finalize is not None:
                    await finalize(stage)
                await self._tracker.complete_stage(stage)

        except Exception as e:
            message = describe_error(e)
            try:
                await self._tracker.fail_stage(stage, message)
            except PipelineError:
                logger.exception(
                    f"Could not record failure of stage '{stage.value}'", extra=log_context
                )
            if isinstance(e, StageFailure):
                raise
            raise StageFailure(
                f"Stage '{stage.value}' failed: {message}", stage=stage.value
            ) from e

        finally:
            result.elapsed_seconds = time.monotonic() - started

        logger.info(
            f"Stage '{stage.value}': {result.processed_count} processed, "
            f"{len(result.failed)} failed in {result.elapsed_seconds:.1f}s",
            extra=log_context,
        )
        return result

    async def run_pipeline(
        self,
        plan: list[tuple[Stage, ItemWorker]],
        config: StageRunConfig | None = None,
        after_stage: StageHook | None = None,
    ) -> list[StageRunResult]:
        """
        Run the planned stages in Stage order.

        Completed stages are skipped. Stops after an interrupted stage; a
        fatal stage failure propagates.

        Args:
            plan: (stage, worker) pairs; stages not listed are not run
            config: Chunk size and concurrency for every stage
            after_stage: Finalize hook passed to each run_stage

        Returns:
            One StageRunResult per planned stage that was reached
        """
        workers = dict(plan)
        results: list[StageRunResult] = []

        for stage in Stage:
            if stage not in workers:
                continue

            if self._tracker.is_stage_complete(stage):
                logger.info(f"Stage '{stage.value}' already completed, skipping")
                results.append(StageRunResult(stage=stage, skipped=True))
                continue

            result = await self.run_stage(stage, workers[stage], config, finalize=after_stage)
            results.append(result)
            if result.interrupted:
                break

        return results
