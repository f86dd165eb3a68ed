# notes_pipeline/stages/base.py
"""
Abstract base class for stage workers.

Each stage processes one item id at a time and writes one JSON file per
note into its own directory under the data root. Stages are driven by the
PipelineOrchestrator, which calls the stage object as an item worker.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from notes_pipeline.errors import ConfigurationError, ItemError
from notes_pipeline.pipeline.checkpoint import CHECKPOINT_FILENAME, atomic_write_json
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.runner import ItemOutcome

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class DataLayout:
    """
    Directory layout under the data root.

    Attributes:
        root: Data directory (config storage.data_dir)
    """

    root: Path

    @property
    def raw_dir(self) -> Path:
        return self.root / "raw"

    @property
    def enriched_dir(self) -> Path:
        return self.root / "enriched"

    @property
    def clusters_dir(self) -> Path:
        return self.root / "clusters"

    @property
    def final_dir(self) -> Path:
        return self.root / "final"

    @property
    def checkpoints_dir(self) -> Path:
        return self.root / "checkpoints"

    @property
    def checkpoint_path(self) -> Path:
        return self.checkpoints_dir / CHECKPOINT_FILENAME

    @property
    def cluster_assignments_path(self) -> Path:
        return self.clusters_dir / "cluster_assignments.json"

    @property
    def statistics_path(self) -> Path:
        return self.final_dir / "dataset_statistics.json"

    @staticmethod
    def note_path(directory: Path, item_id: str) -> Path:
        return directory / f"note-{item_id}.json"

    def ensure(self) -> None:
        """
        Create every stage directory.

        Raises:
            ConfigurationError: If a directory cannot be created
        """
        for directory in (
            self.raw_dir,
            self.enriched_dir,
            self.clusters_dir,
            self.final_dir,
            self.checkpoints_dir,
        ):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(f"Cannot create data directory {directory}: {e}") from e


def read_model(path: Path, model: type[ModelT]) -> ModelT:
    """
    Load and validate a JSON file.

    Raises:
        ItemError: If the file is missing, unreadable or invalid
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ItemError(f"File not found: {path}") from e
    except OSError as e:
        raise ItemError(f"Cannot read {path}: {e}") from e

    try:
        return model.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ItemError(f"Invalid {model.__name__} in {path}: {e}") from e


def write_model(path: Path, record: BaseModel) -> None:
    """Atomically write a model as JSON."""
    atomic_write_json(path, record.model_dump(mode="json"))


class PipelineStage(ABC):
    """
    Base class for stage workers.

    Subclasses implement process_item(); the orchestrator calls the stage
    instance directly as its item worker. finalize() runs once all items are
    settled, before the stage is marked completed.
    """

    def __init__(self, layout: DataLayout) -> None:
        self._layout = layout

    @property
    @abstractmethod
    def stage(self) -> Stage:
        """The Stage this worker implements."""

    @abstractmethod
    async def process_item(self, item_id: str) -> ItemOutcome:
        """
        Process one item.

        Raises:
            ItemError: The item failed; siblings are unaffected
        """

    async def finalize(self) -> None:
        """Whole-stage work after every item has settled. No-op by default."""

    async def __call__(self, item_id: str) -> ItemOutcome:
        return await self.process_item(item_id)

    async def _read(self, directory: Path, item_id: str, model: type[ModelT]) -> ModelT:
        return await asyncio.to_thread(
            read_model, DataLayout.note_path(directory, item_id), model
        )

    async def _write(self, directory: Path, item_id: str, record: BaseModel) -> None:
        await asyncio.to_thread(
            write_model, DataLayout.note_path(directory, item_id), record
        )
