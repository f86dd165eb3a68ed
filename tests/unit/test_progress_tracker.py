# tests/unit/test_progress_tracker.py
"""
Unit tests for ProgressTracker.

Tests the stage state machine, settled-id bookkeeping, persistence of
every mutation and load-or-create on initialize.
"""

import asyncio
import json
from pathlib import Path

import pytest
import pytest_asyncio

from notes_pipeline.errors import CheckpointError, ConfigurationError, InvariantViolation
from notes_pipeline.pipeline.checkpoint import CheckpointStore
from notes_pipeline.pipeline.models import Stage, StageStatus
from notes_pipeline.pipeline.progress import ProgressTracker


def _read_document(tracker: ProgressTracker) -> dict:
    return json.loads(tracker.store.path.read_text(encoding="utf-8"))


@pytest_asyncio.fixture
async def tracker(tmp_path: Path) -> ProgressTracker:
    """Tracker initialized for three items."""
    tracker = ProgressTracker(CheckpointStore(tmp_path / "checkpoints" / "checkpoint.json"))
    await tracker.initialize(3)
    return tracker


class TestInitialize:
    """Tests for load-or-create."""

    @pytest.mark.asyncio
    async def test_creates_and_persists(self, tracker: ProgressTracker):
        document = _read_document(tracker)

        assert document["totalItems"] == 3
        assert set(document["stages"]) == {stage.value for stage in Stage}
        assert all(s["status"] == "not_started" for s in document["stages"].values())

    @pytest.mark.asyncio
    async def test_resumes_existing_progress(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)
        await tracker.update_item_progress(Stage.RAW_EXPORT, "0", True)

        resumed = ProgressTracker(CheckpointStore(tracker.store.path))
        await resumed.initialize(3)

        assert resumed.stage_status(Stage.RAW_EXPORT) is StageStatus.IN_PROGRESS
        assert resumed.get_stage_progress(Stage.RAW_EXPORT).processed_ids == {"0"}

    @pytest.mark.asyncio
    async def test_changed_total_corrected_progress_kept(self, tmp_path: Path):
        store = CheckpointStore(tmp_path / "checkpoint.json")
        first = ProgressTracker(store)
        await first.initialize(10)
        await first.start_stage(Stage.ENRICHMENT)
        for item_id in ("0", "1", "2"):
            await first.update_item_progress(Stage.ENRICHMENT, item_id, True)

        second = ProgressTracker(CheckpointStore(store.path))
        await second.initialize(15)

        assert second.total_items == 15
        assert second.get_stage_progress(Stage.ENRICHMENT).processed_ids == {"0", "1", "2"}
        assert _read_document(second)["totalItems"] == 15

    @pytest.mark.asyncio
    async def test_shrunken_total_keeps_percent_in_range(self, tmp_path: Path):
        store = CheckpointStore(tmp_path / "checkpoint.json")
        first = ProgressTracker(store)
        await first.initialize(10)
        await first.start_stage(Stage.ENRICHMENT)
        for item_id in ("0", "1", "7", "8", "9"):
            await first.update_item_progress(Stage.ENRICHMENT, item_id, True)

        second = ProgressTracker(CheckpointStore(store.path))
        await second.initialize(5)

        assert second.percent_complete(Stage.ENRICHMENT) == pytest.approx(40.0)
        for item_id in ("2", "3", "4"):
            await second.update_item_progress(Stage.ENRICHMENT, item_id, True)
        assert second.percent_complete(Stage.ENRICHMENT) == 100.0
        assert second.next_pending_item(Stage.ENRICHMENT) is None

    @pytest.mark.asyncio
    async def test_uncreatable_directory(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        tracker = ProgressTracker(CheckpointStore(blocker / "sub" / "checkpoint.json"))

        with pytest.raises(ConfigurationError):
            await tracker.initialize(1)

    @pytest.mark.asyncio
    async def test_corrupt_checkpoint(self, tmp_path: Path):
        path = tmp_path / "checkpoint.json"
        path.write_text("garbage")

        with pytest.raises(CheckpointError):
            await ProgressTracker(CheckpointStore(path)).initialize(1)

    @pytest.mark.asyncio
    async def test_negative_total(self, tmp_path: Path):
        with pytest.raises(ValueError):
            await ProgressTracker(CheckpointStore(tmp_path / "c.json")).initialize(-1)

    @pytest.mark.asyncio
    async def test_use_before_initialize(self, tmp_path: Path):
        tracker = ProgressTracker(CheckpointStore(tmp_path / "c.json"))

        with pytest.raises(InvariantViolation):
            tracker.next_pending_item(Stage.RAW_EXPORT)

    @pytest.mark.asyncio
    async def test_load_existing(self, tracker: ProgressTracker, tmp_path: Path):
        other = ProgressTracker(CheckpointStore(tracker.store.path))
        assert await other.load_existing() is True
        assert other.total_items == 3

        missing = ProgressTracker(CheckpointStore(tmp_path / "none" / "c.json"))
        assert await missing.load_existing() is False


class TestStateMachine:
    """Tests for stage transitions."""

    @pytest.mark.asyncio
    async def test_start_records_start_time(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)

        progress = tracker.get_stage_progress(Stage.RAW_EXPORT)
        assert progress.status is StageStatus.IN_PROGRESS
        assert progress.start_time is not None
        assert _read_document(tracker)["stages"]["raw_export"]["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)
        first_start = tracker.get_stage_progress(Stage.RAW_EXPORT).start_time

        await tracker.start_stage(Stage.RAW_EXPORT)

        progress = tracker.get_stage_progress(Stage.RAW_EXPORT)
        assert progress.status is StageStatus.IN_PROGRESS
        assert progress.start_time == first_start

    @pytest.mark.asyncio
    async def test_complete(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)
        for item_id in ("0", "1", "2"):
            await tracker.update_item_progress(Stage.RAW_EXPORT, item_id, True)
        await tracker.complete_stage(Stage.RAW_EXPORT)

        assert tracker.is_stage_complete(Stage.RAW_EXPORT)
        assert tracker.get_stage_progress(Stage.RAW_EXPORT).completion_time is not None
        assert tracker.next_pending_item(Stage.RAW_EXPORT) is None
        assert tracker.percent_complete(Stage.RAW_EXPORT) == 100.0

    @pytest.mark.asyncio
    async def test_premature_completion_allowed(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.CLUSTERING)
        await tracker.complete_stage(Stage.CLUSTERING)

        assert tracker.is_stage_complete(Stage.CLUSTERING)
        assert tracker.next_pending_item(Stage.CLUSTERING) == "0"

    @pytest.mark.asyncio
    async def test_start_completed_stage_rejected(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)
        await tracker.complete_stage(Stage.RAW_EXPORT)

        with pytest.raises(InvariantViolation, match="already completed"):
            await tracker.start_stage(Stage.RAW_EXPORT)
        assert tracker.is_stage_complete(Stage.RAW_EXPORT)

    @pytest.mark.asyncio
    async def test_fail_then_restart(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.ENRICHMENT)
        await tracker.update_item_progress(Stage.ENRICHMENT, "0", True)
        await tracker.fail_stage(Stage.ENRICHMENT, "API key revoked")

        failed = tracker.get_stage_progress(Stage.ENRICHMENT)
        assert failed.status is StageStatus.FAILED
        assert failed.error == "API key revoked"
        assert failed.processed_ids == {"0"}

        await tracker.start_stage(Stage.ENRICHMENT)
        restarted = tracker.get_stage_progress(Stage.ENRICHMENT)
        assert restarted.status is StageStatus.IN_PROGRESS
        assert restarted.error is None
        assert restarted.processed_ids == {"0"}


class TestItemProgress:
    """Tests for settled-id bookkeeping."""

    @pytest.mark.asyncio
    async def test_three_item_scenario(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.RAW_EXPORT)
        await tracker.update_item_progress(Stage.RAW_EXPORT, "0", True)
        await tracker.update_item_progress(Stage.RAW_EXPORT, "1", False)

        assert tracker.next_pending_item(Stage.RAW_EXPORT) == "2"
        assert tracker.percent_complete(Stage.RAW_EXPORT) == pytest.approx(100 / 3)
        document = _read_document(tracker)["stages"]["raw_export"]
        assert document["processedNoteIds"] == ["0"]
        assert document["failedNoteIds"] == ["1"]
        assert "lastProcessedTime" in document

    @pytest.mark.asyncio
    async def test_same_outcome_is_noop(self, tracker: ProgressTracker):
        await tracker.update_item_progress(Stage.RAW_EXPORT, "0", True)
        await tracker.update_item_progress(Stage.RAW_EXPORT, "0", True)

        assert tracker.get_stage_progress(Stage.RAW_EXPORT).processed_ids == {"0"}

    @pytest.mark.asyncio
    async def test_opposite_outcome_rejected(self, tracker: ProgressTracker):
        await tracker.update_item_progress(Stage.RAW_EXPORT, "0", False)

        with pytest.raises(InvariantViolation, match="already settled"):
            await tracker.update_item_progress(Stage.RAW_EXPORT, "0", True)

        progress = tracker.get_stage_progress(Stage.RAW_EXPORT)
        assert progress.failed_ids == {"0"}
        assert progress.processed_ids == set()

    @pytest.mark.asyncio
    async def test_pending_items_ascending_with_limit(self, tmp_path: Path):
        tracker = ProgressTracker(CheckpointStore(tmp_path / "c.json"))
        await tracker.initialize(12)
        await tracker.update_item_progress(Stage.ENRICHMENT, "1", True)
        await tracker.update_item_progress(Stage.ENRICHMENT, "3", False)

        assert tracker.pending_items(Stage.ENRICHMENT, 4) == ["0", "2", "4", "5"]
        assert tracker.pending_items(Stage.ENRICHMENT, 100)[-1] == "11"

    @pytest.mark.asyncio
    async def test_zero_items(self, tmp_path: Path):
        tracker = ProgressTracker(CheckpointStore(tmp_path / "c.json"))
        await tracker.initialize(0)

        assert tracker.percent_complete(Stage.RAW_EXPORT) == 0.0
        assert tracker.next_pending_item(Stage.RAW_EXPORT) is None

    @pytest.mark.asyncio
    async def test_concurrent_updates_all_persisted(self, tmp_path: Path):
        tracker = ProgressTracker(CheckpointStore(tmp_path / "c.json"))
        await tracker.initialize(50)

        await asyncio.gather(
            *(
                tracker.update_item_progress(Stage.RAW_EXPORT, str(i), i % 5 != 0)
                for i in range(50)
            )
        )

        document = _read_document(tracker)["stages"]["raw_export"]
        assert len(document["processedNoteIds"]) == 40
        assert len(document["failedNoteIds"]) == 10
        assert tracker.next_pending_item(Stage.RAW_EXPORT) is None

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, tracker: ProgressTracker):
        snapshot = tracker.get_stage_progress(Stage.RAW_EXPORT)
        snapshot.processed_ids.add("0")

        assert tracker.next_pending_item(Stage.RAW_EXPORT) == "0"


class TestResetFailed:
    """Tests for the external retry reset."""

    @pytest.mark.asyncio
    async def test_clears_failed_and_reopens_completed_stage(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.ENRICHMENT)
        await tracker.update_item_progress(Stage.ENRICHMENT, "0", True)
        await tracker.update_item_progress(Stage.ENRICHMENT, "1", False)
        await tracker.update_item_progress(Stage.ENRICHMENT, "2", False)
        await tracker.complete_stage(Stage.ENRICHMENT)

        cleared = await tracker.reset_failed(Stage.ENRICHMENT)

        assert cleared == 2
        progress = tracker.get_stage_progress(Stage.ENRICHMENT)
        assert progress.status is StageStatus.NOT_STARTED
        assert progress.processed_ids == {"0"}
        assert progress.failed_ids == set()
        assert tracker.pending_items(Stage.ENRICHMENT, 10) == ["1", "2"]

    @pytest.mark.asyncio
    async def test_in_progress_stage_stays_in_progress(self, tracker: ProgressTracker):
        await tracker.start_stage(Stage.ENRICHMENT)
        await tracker.update_item_progress(Stage.ENRICHMENT, "1", False)

        assert await tracker.reset_failed(Stage.ENRICHMENT) == 1
        assert tracker.stage_status(Stage.ENRICHMENT) is StageStatus.IN_PROGRESS
