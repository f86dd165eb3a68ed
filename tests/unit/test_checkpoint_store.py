# tests/unit/test_checkpoint_store.py
"""
Unit tests for the checkpoint document and CheckpointStore.

Tests on-disk layout, legacy documents, atomic writes and error mapping.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from notes_pipeline.errors import CheckpointError, ConfigurationError
from notes_pipeline.pipeline.checkpoint import CheckpointStore
from notes_pipeline.pipeline.models import (
    CHECKPOINT_VERSION,
    CheckpointMetadata,
    Stage,
    StageProgress,
    StageStatus,
    sorted_item_ids,
)


@pytest.fixture
def store(tmp_path: Path) -> CheckpointStore:
    """Store whose directory already exists."""
    return CheckpointStore(tmp_path / "checkpoints" / "checkpoint.json")


class TestCheckpointMetadata:
    """Tests for the pydantic document model."""

    def test_create_has_every_stage_not_started(self):
        metadata = CheckpointMetadata.create(7)

        assert metadata.version == CHECKPOINT_VERSION
        assert metadata.total_items == 7
        assert list(metadata.stages) == list(Stage)
        assert all(p.status is StageStatus.NOT_STARTED for p in metadata.stages.values())
        assert metadata.created_at == metadata.last_updated

    def test_document_uses_camel_case_and_sorted_ids(self):
        metadata = CheckpointMetadata.create(12)
        metadata.stages[Stage.ENRICHMENT].processed_ids.update({"10", "2", "1"})
        metadata.stages[Stage.ENRICHMENT].failed_ids.add("3")

        document = metadata.to_document()

        assert document["totalItems"] == 12
        assert "createdAt" in document and "lastUpdated" in document
        enrichment = document["stages"]["enrichment"]
        assert enrichment["status"] == "not_started"
        assert enrichment["processedNoteIds"] == ["1", "2", "10"]
        assert enrichment["failedNoteIds"] == ["3"]
        # None fields are omitted
        assert "startTime" not in enrichment
        assert "error" not in enrichment

    def test_document_round_trip(self):
        metadata = CheckpointMetadata.create(3)
        metadata.stages[Stage.RAW_EXPORT].processed_ids.add("0")
        metadata.stages[Stage.RAW_EXPORT].status = StageStatus.IN_PROGRESS

        restored = CheckpointMetadata.from_document(json.loads(json.dumps(metadata.to_document())))

        assert restored.total_items == 3
        assert restored.stages[Stage.RAW_EXPORT].processed_ids == {"0"}
        assert restored.stages[Stage.RAW_EXPORT].status is StageStatus.IN_PROGRESS

    def test_accepts_legacy_total_notes(self):
        restored = CheckpointMetadata.from_document(
            {
                "version": "1.0.0",
                "totalNotes": 4,
                "stages": {"raw_export": {"status": "completed", "processedNoteIds": ["0"]}},
                "createdAt": "2024-01-01T00:00:00+00:00",
                "lastUpdated": "2024-01-01T00:00:00+00:00",
            }
        )

        assert restored.total_items == 4
        assert restored.stages[Stage.RAW_EXPORT].status is StageStatus.COMPLETED
        # Missing stages are filled in
        assert restored.stages[Stage.FINAL_MERGE].status is StageStatus.NOT_STARTED

    def test_overlapping_sets_rejected(self):
        with pytest.raises(ValidationError, match="both processed and failed"):
            StageProgress(processed_ids={"1"}, failed_ids={"1"})

    def test_negative_total_rejected(self):
        with pytest.raises(ValidationError):
            CheckpointMetadata(total_items=-1)

    def test_sorted_item_ids_numeric_order(self):
        assert sorted_item_ids({"10", "9", "100", "0"}) == ["0", "9", "10", "100"]


class TestCheckpointStore:
    """Tests for CheckpointStore persistence."""

    def test_load_missing_returns_none(self, store: CheckpointStore):
        assert store.load() is None

    def test_save_then_load(self, store: CheckpointStore):
        store.ensure_directory()
        metadata = CheckpointMetadata.create(5)
        metadata.stages[Stage.CLUSTERING].failed_ids.add("4")

        store.save(metadata)
        loaded = store.load()

        assert loaded is not None
        assert loaded.total_items == 5
        assert loaded.stages[Stage.CLUSTERING].failed_ids == {"4"}

    def test_save_leaves_no_temp_files(self, store: CheckpointStore):
        store.ensure_directory()
        store.save(CheckpointMetadata.create(1))
        store.save(CheckpointMetadata.create(2))

        assert [p.name for p in store.path.parent.iterdir()] == ["checkpoint.json"]

    def test_failed_save_keeps_previous_document(self, store: CheckpointStore):
        store.ensure_directory()
        store.save(CheckpointMetadata.create(1))

        with patch("notes_pipeline.pipeline.checkpoint.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(CheckpointError, match="disk full"):
                store.save(CheckpointMetadata.create(99))

        loaded = store.load()
        assert loaded is not None
        assert loaded.total_items == 1
        assert [p.name for p in store.path.parent.iterdir()] == ["checkpoint.json"]

    def test_invalid_json_raises(self, store: CheckpointStore):
        store.ensure_directory()
        store.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CheckpointError, match="Invalid JSON"):
            store.load()

    def test_malformed_document_raises(self, store: CheckpointStore):
        store.ensure_directory()
        store.path.write_text(json.dumps({"stages": {}}), encoding="utf-8")

        with pytest.raises(CheckpointError, match="Malformed"):
            store.load()

    def test_ensure_directory_failure(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = CheckpointStore(blocker / "checkpoints" / "checkpoint.json")

        with pytest.raises(ConfigurationError):
            store.ensure_directory()

    def test_clear(self, store: CheckpointStore):
        store.ensure_directory()
        store.save(CheckpointMetadata.create(1))

        assert store.clear() is True
        assert store.load() is None
        assert store.clear() is False
