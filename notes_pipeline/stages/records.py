# notes_pipeline/stages/records.py
"""Pydantic models for the per-note files each stage writes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from notes_pipeline.pipeline.models import utc_now

UNASSIGNED_CLUSTER = -1


class SourceNote(BaseModel):
    """A note as handed over by a NoteSource."""

    model_config = ConfigDict(extra="ignore")

    title: str
    content: str
    creation_date: str | None = None
    modification_date: str | None = None


class Note(SourceNote):
    """A raw exported note (raw/note-<id>.json)."""

    id: str


class EnrichedNote(Note):
    """A note with summary, tags and embedding (enriched/note-<id>.json)."""

    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    embedding: list[float] = Field(default_factory=list)
    enriched_at: datetime = Field(default_factory=utc_now)


class FinalNote(EnrichedNote):
    """An enriched note with its cluster (final/note-<id>.json)."""

    cluster_id: int = UNASSIGNED_CLUSTER


class ClusterAssignments(BaseModel):
    """clusters/cluster_assignments.json"""

    model_config = ConfigDict(extra="ignore")

    algorithm: str = "kmeans"
    parameters: dict[str, int | None] = Field(default_factory=dict)
    total_notes: int = 0
    total_clusters: int = 0
    assignments: dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class MetadataStats(BaseModel):
    notes_with_title: int = 0
    notes_with_tags: int = 0
    total_tags: int = 0
    unique_tags: int = 0
    average_tags_per_note: float = 0.0


class EnrichmentStats(BaseModel):
    notes_with_summary: int = 0
    notes_with_embeddings: int = 0
    embedding_dimensions: int = 0


class ClusterStats(BaseModel):
    total_clusters: int = 0
    average_notes_per_cluster: float = 0.0
    largest_cluster_size: int = 0
    smallest_cluster_size: int = 0


class DatasetStatistics(BaseModel):
    """final/dataset_statistics.json"""

    total_notes: int = 0
    notes_per_cluster: dict[int, int] = Field(default_factory=dict)
    average_note_length: float = 0.0
    metadata_stats: MetadataStats = Field(default_factory=MetadataStats)
    enrichment_stats: EnrichmentStats = Field(default_factory=EnrichmentStats)
    cluster_stats: ClusterStats = Field(default_factory=ClusterStats)
