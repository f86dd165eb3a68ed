# notes_pipeline/pipeline/runner.py
"""
Bounded-parallel batch execution.

Runs a worker coroutine over a set of item ids with a concurrency ceiling,
collecting per-item outcomes without letting one failure abort the batch.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from notes_pipeline.errors import Cancelled, FatalError, ItemError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """
    Result of one item's unit of work.

    Attributes:
        success: Whether the item was processed
        error: Description of the failure (if success=False)
    """

    success: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> "ItemOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "ItemOutcome":
        return cls(success=False, error=error)


ItemWorker = Callable[[str], Awaitable[ItemOutcome]]


@dataclass
class BatchResult:
    """
    Outcomes of one batch.

    Attributes:
        succeeded: Ids whose worker succeeded
        failed: Id -> error description for ids whose worker failed
        skipped: Ids never attempted (cancellation or a fatal sibling error)
    """

    succeeded: set[str] = field(default_factory=set)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def settled(self) -> int:
        return len(self.succeeded) + len(self.failed)


def describe_error(error: BaseException) -> str:
    """Human-readable error text for checkpoint and run reports."""
    if isinstance(error, ItemError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class BoundedBatchRunner:
    """
    Executes a worker over item ids, at most N at a time.

    A worker may report failure by returning ItemOutcome.failed(...) or by
    raising; either way the failure is recorded and siblings keep running.
    A FatalError stops new workers from starting, lets in-flight ones finish,
    and is re-raised once the batch has settled.
    """

    def __init__(self, cancel_event: asyncio.Event | None = None) -> None:
        """
        Initialize batch runner.

        Args:
            cancel_event: When set, workers that have not started yet are skipped
        """
        self._cancel_event = cancel_event

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def run(
        self,
        item_ids: Iterable[str],
        concurrency_limit: int,
        worker: ItemWorker,
    ) -> BatchResult:
        """
        Run worker over every id, each exactly once.

        Args:
            item_ids: Ids to process (duplicates are collapsed)
            concurrency_limit: Maximum concurrently executing workers (>= 1)
            worker: Coroutine function taking an item id

        Returns:
            BatchResult with succeeded, failed and skipped ids

        Raises:
            ValueError: If concurrency_limit < 1
            FatalError: First fatal error raised by any worker
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")

        ids = list(dict.fromkeys(item_ids))
        result = BatchResult()
        semaphore = asyncio.Semaphore(concurrency_limit)
        fatal: list[FatalError] = []

        async def _attempt(item_id: str) -> None:
            async with semaphore:
                if fatal or self._cancelled():
                    result.skipped.append(item_id)
                    return

                try:
                    outcome = await worker(item_id)
                except Cancelled:
                    result.skipped.append(item_id)
                    return
                except FatalError as e:
                    logger.error(f"Fatal error on item {item_id}: {e}", extra={"item_id": item_id})
                    fatal.append(e)
                    return
                except Exception as e:
                    logger.warning(
                        f"Item {item_id} failed: {describe_error(e)}", extra={"item_id": item_id}
                    )
                    result.failed[item_id] = describe_error(e)
                    return

                if outcome.success:
                    result.succeeded.add(item_id)
                else:
                    result.failed[item_id] = outcome.error or "unknown error"

        await asyncio.gather(*(_attempt(item_id) for item_id in ids))

        logger.debug(
            f"Batch of {len(ids)}: {len(result.succeeded)} ok, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )

        if fatal:
            raise fatal[0]
        return result
