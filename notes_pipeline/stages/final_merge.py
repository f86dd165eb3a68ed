# notes_pipeline/stages/final_merge.py
"""
Final merge stage.

Joins each enriched note with its cluster assignment into
final/note-<id>.json and, once all items are settled, writes
final/dataset_statistics.json.
"""

import asyncio
import logging
from collections import Counter

from notes_pipeline.errors import ItemError
from notes_pipeline.pipeline.checkpoint import atomic_write_json
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.runner import ItemOutcome

from .base import DataLayout, PipelineStage, read_model
from .records import (
    UNASSIGNED_CLUSTER,
    ClusterAssignments,
    ClusterStats,
    DatasetStatistics,
    EnrichedNote,
    EnrichmentStats,
    FinalNote,
    MetadataStats,
)

logger = logging.getLogger(__name__)


def generate_summary_statistics(notes: list[FinalNote]) -> DatasetStatistics:
    """
    Summary statistics over the final notes.

    Notes without a cluster count under cluster -1.
    """
    stats = DatasetStatistics(total_notes=len(notes))
    if not notes:
        return stats

    per_cluster = Counter(note.cluster_id for note in notes)
    unique_tags = {tag for note in notes for tag in note.tags}
    total_tags = sum(len(note.tags) for note in notes)
    dimensions = {len(note.embedding) for note in notes if note.embedding}

    stats.notes_per_cluster = dict(sorted(per_cluster.items()))
    stats.average_note_length = sum(len(note.content) for note in notes) / len(notes)
    stats.metadata_stats = MetadataStats(
        notes_with_title=sum(1 for note in notes if note.title),
        notes_with_tags=sum(1 for note in notes if note.tags),
        total_tags=total_tags,
        unique_tags=len(unique_tags),
        average_tags_per_note=total_tags / len(notes),
    )
    stats.enrichment_stats = EnrichmentStats(
        notes_with_summary=sum(1 for note in notes if note.summary),
        notes_with_embeddings=sum(1 for note in notes if note.embedding),
        embedding_dimensions=max(dimensions, default=0),
    )
    sizes = list(per_cluster.values())
    stats.cluster_stats = ClusterStats(
        total_clusters=len(sizes),
        average_notes_per_cluster=len(notes) / len(sizes),
        largest_cluster_size=max(sizes),
        smallest_cluster_size=min(sizes),
    )
    return stats


class FinalMergeStage(PipelineStage):
    """Writes the final per-note records and dataset statistics."""

    def __init__(self, layout: DataLayout) -> None:
        super().__init__(layout)
        self._assignments: dict[str, int] | None = None

    @property
    def stage(self) -> Stage:
        return Stage.FINAL_MERGE

    def _load_assignments(self) -> dict[str, int]:
        if self._assignments is None:
            path = self._layout.cluster_assignments_path
            if path.exists():
                self._assignments = read_model(path, ClusterAssignments).assignments
            else:
                logger.warning(f"No cluster assignments at {path}; all notes get cluster -1")
                self._assignments = {}
        return self._assignments

    async def process_item(self, item_id: str) -> ItemOutcome:
        note = await self._read(self._layout.enriched_dir, item_id, EnrichedNote)
        assignments = await asyncio.to_thread(self._load_assignments)

        cluster_id = assignments.get(item_id)
        if cluster_id is None:
            logger.warning(f"No cluster assignment for note {item_id}, using {UNASSIGNED_CLUSTER}")
            cluster_id = UNASSIGNED_CLUSTER

        final = FinalNote(**note.model_dump(), cluster_id=cluster_id)
        await self._write(self._layout.final_dir, item_id, final)
        return ItemOutcome.ok()

    def _load_final_notes(self) -> list[FinalNote]:
        notes: list[FinalNote] = []
        for path in sorted(self._layout.final_dir.glob("note-*.json")):
            try:
                notes.append(read_model(path, FinalNote))
            except ItemError as e:
                logger.warning(f"Leaving {path.name} out of statistics: {e}")
        return notes

    async def finalize(self) -> None:
        notes = await asyncio.to_thread(self._load_final_notes)
        statistics = generate_summary_statistics(notes)
        await asyncio.to_thread(
            atomic_write_json,
            self._layout.statistics_path,
            statistics.model_dump(mode="json"),
        )
        logger.info(f"Wrote statistics for {statistics.total_notes} notes")
