# notes_pipeline/pipeline/checkpoint.py
"""
Checkpoint persistence for pipeline recovery.

Stores the CheckpointMetadata document as JSON in a single file per run
directory. Writes go to a temp file in the same directory which then
replaces the document, so a crash mid-write never leaves a partially
written checkpoint behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from notes_pipeline.errors import CheckpointError, ConfigurationError
from notes_pipeline.pipeline.models import CheckpointMetadata

logger = logging.getLogger(__name__)

CHECKPOINT_FILENAME = "checkpoint.json"


def atomic_write_json(path: Path, document: Any) -> None:
    """
    Write JSON to path via a temp file in the same directory and os.replace.

    Readers see either the previous file or the complete new one.

    Raises:
        OSError: If the temp file cannot be written or moved into place
    """
    payload = json.dumps(document, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class CheckpointStore:
    """
    Durable storage for the checkpoint document.

    Synchronous on purpose: callers that run on the event loop wrap
    save() in asyncio.to_thread (see ProgressTracker).
    """

    def __init__(self, path: str | Path) -> None:
        """
        Initialize checkpoint store.

        Args:
            path: Path of the checkpoint JSON file
        """
        self._path = Path(path)
        logger.info(f"Created CheckpointStore at {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    def ensure_directory(self) -> None:
        """
        Create the directory holding the checkpoint file.

        Raises:
            ConfigurationError: If the directory cannot be created
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create checkpoint directory {self._path.parent}: {e}"
            ) from e

    def load(self) -> CheckpointMetadata | None:
        """
        Load the checkpoint document.

        Returns:
            CheckpointMetadata, or None if no checkpoint exists yet

        Raises:
            CheckpointError: If the file is unreadable or not a valid checkpoint
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No checkpoint found at {self._path}")
            return None
        except OSError as e:
            raise CheckpointError(f"Cannot read checkpoint {self._path}: {e}") from e

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Invalid JSON in checkpoint {self._path}: {e}") from e

        try:
            metadata = CheckpointMetadata.from_document(document)
        except ValidationError as e:
            raise CheckpointError(f"Malformed checkpoint {self._path}: {e}") from e

        logger.info(
            f"Loaded checkpoint from {self._path} "
            f"(total_items={metadata.total_items}, version={metadata.version})"
        )
        return metadata

    def save(self, metadata: CheckpointMetadata) -> None:
        """
        Atomically persist the checkpoint document.

        Args:
            metadata: Document to write

        Raises:
            CheckpointError: If the document could not be written
        """
        try:
            atomic_write_json(self._path, metadata.to_document())
        except OSError as e:
            raise CheckpointError(f"Cannot write checkpoint {self._path}: {e}") from e

        logger.debug(f"Saved checkpoint to {self._path}")

    def clear(self) -> bool:
        """
        Delete the checkpoint document.

        Returns:
            True if a document was removed, False if none existed
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CheckpointError(f"Cannot delete checkpoint {self._path}: {e}") from e

        logger.info(f"Cleared checkpoint at {self._path}")
        return True
