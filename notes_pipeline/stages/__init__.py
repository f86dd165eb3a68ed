# notes_pipeline/stages/__init__.py
"""
Stage worker implementations.

Exports the four stage workers and create_stages() for building the
enabled ones from config.
"""

from typing import TYPE_CHECKING

from notes_pipeline.pipeline.models import Stage
from notes_pipeline.stages.base import DataLayout, PipelineStage
from notes_pipeline.stages.clustering import (
    ClusterAssigner,
    ClusteringStage,
    kmeans_assign,
    make_kmeans_assigner,
)
from notes_pipeline.stages.enrichment import EnrichmentStage
from notes_pipeline.stages.final_merge import FinalMergeStage, generate_summary_statistics
from notes_pipeline.stages.raw_export import DirectoryNoteSource, NoteSource, RawExportStage

if TYPE_CHECKING:
    from notes_pipeline.config.schema import NotesPipelineConfig
    from notes_pipeline.llm.client import EnrichmentService


def create_stages(
    config: "NotesPipelineConfig",
    layout: DataLayout,
    source: NoteSource | None,
    titles: list[str],
    service: "EnrichmentService | None",
) -> list[PipelineStage]:
    """
    Create the stage workers enabled in config.stages.

    Args:
        config: Root NotesPipelineConfig
        layout: Data directory layout
        source: Note source (required when raw export is enabled)
        titles: The source's title list (item id N is titles[N])
        service: Enrichment service (required when enrichment is enabled)

    Returns:
        Enabled stages in processing order
    """
    stages: list[PipelineStage] = []

    enabled = config.stages.is_enabled

    if enabled(Stage.RAW_EXPORT) and source is not None:
        stages.append(RawExportStage(layout, source, titles))
    if enabled(Stage.ENRICHMENT) and service is not None:
        stages.append(EnrichmentStage(layout, service))
    if enabled(Stage.CLUSTERING):
        clustering = config.clustering
        stages.append(
            ClusteringStage(
                layout,
                make_kmeans_assigner(clustering.num_clusters, clustering.max_clusters, clustering.seed),
                parameters={
                    "num_clusters": clustering.num_clusters,
                    "max_clusters": clustering.max_clusters,
                    "seed": clustering.seed,
                },
            )
        )
    if enabled(Stage.FINAL_MERGE):
        stages.append(FinalMergeStage(layout))

    return stages


__all__ = [
    "ClusterAssigner",
    "ClusteringStage",
    "DataLayout",
    "DirectoryNoteSource",
    "EnrichmentStage",
    "FinalMergeStage",
    "NoteSource",
    "PipelineStage",
    "RawExportStage",
    "create_stages",
    "generate_summary_statistics",
    "kmeans_assign",
    "make_kmeans_assigner",
]
