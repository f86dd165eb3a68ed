# notes_pipeline/pipeline/models.py
"""
Checkpoint data model.

Pydantic models for the persisted checkpoint document. Field names are
snake_case in Python and camelCase on disk (processedNoteIds, totalItems, ...)
so documents stay compatible with earlier exports.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

CHECKPOINT_VERSION = "1.0.0"


class Stage(Enum):
    """Pipeline stages. Declaration order is processing order."""

    RAW_EXPORT = "raw_export"
    ENRICHMENT = "enrichment"
    CLUSTERING = "clustering"
    FINAL_MERGE = "final_merge"


class StageStatus(Enum):
    """Lifecycle of a single stage."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def item_id_sort_key(item_id: str) -> tuple[int, int, str]:
    """Sort numeric ids numerically ("2" < "10"); anything else after them."""
    if item_id.isdigit():
        return (0, int(item_id), "")
    return (1, 0, item_id)


def sorted_item_ids(item_ids: set[str] | list[str]) -> list[str]:
    return sorted(item_ids, key=item_id_sort_key)


class StageProgress(BaseModel):
    """Progress of one stage: settled ids plus timestamps."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: StageStatus = StageStatus.NOT_STARTED
    processed_ids: set[str] = Field(default_factory=set, alias="processedNoteIds")
    failed_ids: set[str] = Field(default_factory=set, alias="failedNoteIds")
    start_time: datetime | None = Field(default=None, alias="startTime")
    completion_time: datetime | None = Field(default=None, alias="completionTime")
    last_processed_time: datetime | None = Field(default=None, alias="lastProcessedTime")
    error: str | None = None

    @model_validator(mode="after")
    def _check_disjoint(self) -> "StageProgress":
        overlap = self.processed_ids & self.failed_ids
        if overlap:
            raise ValueError(
                f"ids recorded as both processed and failed: {sorted_item_ids(overlap)}"
            )
        return self

    @field_serializer("processed_ids", "failed_ids")
    def _serialize_ids(self, ids: set[str]) -> list[str]:
        return sorted_item_ids(ids)

    def is_settled(self, item_id: str) -> bool:
        return item_id in self.processed_ids or item_id in self.failed_ids

    @property
    def settled_count(self) -> int:
        return len(self.processed_ids) + len(self.failed_ids)


def _fresh_stages() -> dict[Stage, StageProgress]:
    return {stage: StageProgress() for stage in Stage}


class CheckpointMetadata(BaseModel):
    """The whole persisted checkpoint document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str = CHECKPOINT_VERSION
    total_items: int = Field(alias="totalItems", ge=0)
    stages: dict[Stage, StageProgress] = Field(default_factory=_fresh_stages)
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")

    @model_validator(mode="before")
    @classmethod
    def _accept_total_notes(cls, data: Any) -> Any:
        # Older documents call the item count "totalNotes"
        if (
            isinstance(data, dict)
            and "totalItems" not in data
            and "total_items" not in data
            and "totalNotes" in data
        ):
            data = {**data, "totalItems": data["totalNotes"]}
        return data

    @field_validator("stages", mode="after")
    @classmethod
    def _fill_missing_stages(
        cls, stages: dict[Stage, StageProgress]
    ) -> dict[Stage, StageProgress]:
        return {
            stage: stages[stage] if stage in stages else StageProgress()
            for stage in Stage
        }

    @classmethod
    def create(cls, total_items: int) -> "CheckpointMetadata":
        """Fresh document with every stage NOT_STARTED."""
        now = utc_now()
        return cls(total_items=total_items, created_at=now, last_updated=now)

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict in the on-disk layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "CheckpointMetadata":
        return cls.model_validate(document)
