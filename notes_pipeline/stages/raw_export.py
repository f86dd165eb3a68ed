# notes_pipeline/stages/raw_export.py
"""
Raw export stage: copies each source note into raw/note-<id>.json.

Item ids are indexes into the source's title list, so the list must be
taken once per run and kept stable while the stage runs.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from notes_pipeline.errors import ConfigurationError, ItemError
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.runner import ItemOutcome

from .base import DataLayout, PipelineStage
from .records import Note, SourceNote

logger = logging.getLogger(__name__)


class NoteSource(Protocol):
    """Where notes come from (a notes app export, a directory, ...)."""

    async def list_titles(self) -> list[str]: ...

    async def get_note(self, title: str) -> SourceNote: ...


class DirectoryNoteSource:
    """
    Notes stored as Markdown or plain-text files under a directory.

    Titles are file paths relative to the directory, sorted, so the
    index of each note is stable between runs over unchanged files.
    """

    SUFFIXES = (".md", ".txt")

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _scan(self) -> list[str]:
        if not self.directory.is_dir():
            raise ConfigurationError(f"Notes directory not found: {self.directory}")
        return sorted(
            path.relative_to(self.directory).as_posix()
            for path in self.directory.rglob("*")
            if path.is_file() and path.suffix.lower() in self.SUFFIXES
        )

    def _read(self, title: str) -> SourceNote:
        path = self.directory / title
        try:
            content = path.read_text(encoding="utf-8")
            stat = path.stat()
        except OSError as e:
            raise ItemError(f"Cannot read note {title}: {e}") from e

        return SourceNote(
            title=path.stem,
            content=content,
            creation_date=_iso(getattr(stat, "st_birthtime", stat.st_ctime)),
            modification_date=_iso(stat.st_mtime),
        )

    async def list_titles(self) -> list[str]:
        return await asyncio.to_thread(self._scan)

    async def get_note(self, title: str) -> SourceNote:
        return await asyncio.to_thread(self._read, title)


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class RawExportStage(PipelineStage):
    """Exports one note per item id from a NoteSource."""

    def __init__(self, layout: DataLayout, source: NoteSource, titles: list[str]) -> None:
        """
        Args:
            layout: Data directory layout
            source: Where notes are read from
            titles: The source's title list; item id N is titles[N]
        """
        super().__init__(layout)
        self._source = source
        self._titles = titles

    @property
    def stage(self) -> Stage:
        return Stage.RAW_EXPORT

    async def process_item(self, item_id: str) -> ItemOutcome:
        try:
            title = self._titles[int(item_id)]
        except (ValueError, IndexError) as e:
            raise ItemError(f"No source note for item {item_id}") from e

        source_note = await self._source.get_note(title)
        note = Note(id=item_id, **source_note.model_dump())
        await self._write(self._layout.raw_dir, item_id, note)
        logger.debug(f"Exported note {item_id} ({title!r})")
        return ItemOutcome.ok()
