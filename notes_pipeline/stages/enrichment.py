# notes_pipeline/stages/enrichment.py
"""Enrichment stage: summary, tags and an embedding of the summary per note."""

import logging

from notes_pipeline.errors import ItemError
from notes_pipeline.llm.client import EnrichmentService
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.runner import ItemOutcome

from .base import DataLayout, PipelineStage
from .records import EnrichedNote, Note

logger = logging.getLogger(__name__)


class EnrichmentStage(PipelineStage):
    """
    Reads raw/note-<id>.json, writes enriched/note-<id>.json.

    The summary is embedded rather than the full content, which keeps
    embedding calls small. Notes with an empty summary fall back to
    embedding their content.
    """

    def __init__(self, layout: DataLayout, service: EnrichmentService) -> None:
        super().__init__(layout)
        self._service = service

    @property
    def stage(self) -> Stage:
        return Stage.ENRICHMENT

    async def process_item(self, item_id: str) -> ItemOutcome:
        note = await self._read(self._layout.raw_dir, item_id, Note)
        if not note.content.strip():
            raise ItemError(f"Note {item_id} has no content")

        summary, tags = await self._service.summarize_and_tag(note.content)
        [embedding] = await self._service.embed([summary or note.content])

        enriched = EnrichedNote(
            **note.model_dump(),
            summary=summary,
            tags=tags,
            embedding=embedding,
        )
        await self._write(self._layout.enriched_dir, item_id, enriched)
        logger.debug(f"Enriched note {item_id}: {len(tags)} tags, {len(embedding)}-dim embedding")
        return ItemOutcome.ok()
