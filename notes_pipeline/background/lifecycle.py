# notes_pipeline/background/lifecycle.py
"""
Pipeline run lifecycle.

Coordinates startup (data directories, checkpoint load-or-create, signal
handlers, enrichment client), the stage run and shutdown.
"""

import asyncio
import logging
from pathlib import Path

from notes_pipeline.background.signals import remove_signal_handlers, setup_signal_handlers
from notes_pipeline.config.schema import NotesPipelineConfig
from notes_pipeline.errors import ConfigurationError
from notes_pipeline.llm.client import OpenAIEnrichmentService
from notes_pipeline.llm.factory import create_enrichment_service
from notes_pipeline.pipeline.checkpoint import CheckpointStore
from notes_pipeline.pipeline.models import Stage
from notes_pipeline.pipeline.orchestrator import (
    PipelineOrchestrator,
    StageRunConfig,
    StageRunResult,
)
from notes_pipeline.pipeline.progress import ProgressTracker
from notes_pipeline.stages import (
    DataLayout,
    DirectoryNoteSource,
    NoteSource,
    PipelineStage,
    create_stages,
)

logger = logging.getLogger(__name__)


class PipelineLifecycle:
    """
    Run coordinator.

    Manages:
        - Data directory layout and checkpoint initialization
        - Signal handler registration (graceful stop via cancel_event)
        - Enrichment client creation, only when enrichment still has work
        - Stage worker assembly and orchestration
    """

    def __init__(
        self,
        config: NotesPipelineConfig,
        source: NoteSource | str | Path | None = None,
        cancel_event: asyncio.Event | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        """
        Initialize run lifecycle.

        Args:
            config: Root NotesPipelineConfig
            source: NoteSource, or a directory of .md/.txt notes (None = resume
                from an existing checkpoint without raw export)
            cancel_event: Shared shutdown event (created if not given)
            install_signal_handlers: Register SIGINT/SIGTERM handlers on startup
        """
        self._config = config
        if isinstance(source, (str, Path)):
            source = DirectoryNoteSource(source)
        self._source = source
        self._cancel_event = cancel_event or asyncio.Event()
        self._install_signal_handlers = install_signal_handlers

        self._layout = DataLayout(Path(config.storage.data_dir).expanduser())
        self._store = CheckpointStore(self._layout.checkpoint_path)
        self._tracker = ProgressTracker(self._store)
        self._orchestrator = PipelineOrchestrator(self._tracker, cancel_event=self._cancel_event)
        self._service: OpenAIEnrichmentService | None = None
        self._titles: list[str] = []
        self._signals_installed = False
        logger.info(f"Created PipelineLifecycle with data_dir={self._layout.root}")

    @property
    def layout(self) -> DataLayout:
        return self._layout

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    async def startup(self) -> None:
        """
        Prepare a run.

        Steps:
            1. Create the data directories
            2. List source notes and load-or-create the checkpoint
            3. Register signal handlers

        Raises:
            ConfigurationError: If there is neither a source nor a checkpoint
            CheckpointError: If the checkpoint cannot be read or written
        """
        logger.info("Starting pipeline lifecycle...")
        self._layout.ensure()

        if self._source is not None:
            self._titles = await self._source.list_titles()
            await self._tracker.initialize(len(self._titles))
            logger.info(f"Found {len(self._titles)} notes in source")
        elif not await self._tracker.load_existing():
            raise ConfigurationError("No checkpoint to resume; pass a notes source for the first run")

        if self._install_signal_handlers:
            setup_signal_handlers(self._cancel_event)
            self._signals_installed = True

    def _build_stages(self) -> list[PipelineStage]:
        if (
            self._config.stages.is_enabled(Stage.ENRICHMENT)
            and not self._tracker.is_stage_complete(Stage.ENRICHMENT)
            and self._service is None
        ):
            self._service = create_enrichment_service(self._config, self._cancel_event)

        return create_stages(
            self._config,
            self._layout,
            self._source,
            self._titles,
            self._service,
        )

    async def run(self, only: Stage | None = None) -> list[StageRunResult]:
        """
        Run every enabled stage (or just one) in processing order.

        Args:
            only: Run only this stage

        Returns:
            StageRunResult per stage reached

        Raises:
            ConfigurationError: If the requested stage is disabled or has no source
            StageFailure: If a stage aborted
        """
        stages = {stage.stage: stage for stage in self._build_stages()}
        if only is not None:
            if only not in stages:
                raise ConfigurationError(
                    f"Stage '{only.value}' cannot run: it is disabled or needs a notes source"
                )
            stages = {only: stages[only]}

        async def _finalize(stage: Stage) -> None:
            await stages[stage].finalize()

        processing = self._config.processing
        return await self._orchestrator.run_pipeline(
            list(stages.items()),
            StageRunConfig(
                batch_size=processing.batch_size,
                concurrency_limit=processing.concurrency_limit,
            ),
            after_stage=_finalize,
        )

    async def shutdown(self) -> None:
        """Remove signal handlers and close the API client."""
        logger.info("Shutting down pipeline lifecycle...")
        if self._signals_installed:
            remove_signal_handlers()
            self._signals_installed = False
        if self._service is not None:
            await self._service.close()
            self._service = None
