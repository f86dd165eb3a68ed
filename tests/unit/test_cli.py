# tests/unit/test_cli.py
"""
CLI unit tests.

Tests each command via typer's CliRunner against a config file and data
directory under tmp_path.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from notes_pipeline.cli import app
from notes_pipeline.errors import StageFailure
from notes_pipeline.pipeline.checkpoint import CheckpointStore
from notes_pipeline.pipeline.models import (
    CheckpointMetadata,
    Stage,
    StageProgress,
    StageStatus,
)
from notes_pipeline.pipeline.orchestrator import StageRunResult
from notes_pipeline.stages.base import DataLayout

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def config_file(tmp_path: Path, data_dir: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"data_dir": str(data_dir)},
                "stages": {"enrichment": False, "clustering": False, "final_merge": False},
                "logging": {"level": "WARNING"},
            }
        )
    )
    return path


@pytest.fixture
def checkpoint(data_dir: Path) -> CheckpointStore:
    """Three notes: raw export done, enrichment with one failure."""
    path = DataLayout(data_dir).checkpoint_path
    path.parent.mkdir(parents=True)
    metadata = CheckpointMetadata.create(3)
    metadata.stages[Stage.RAW_EXPORT] = StageProgress(
        status=StageStatus.COMPLETED, processed_ids={"0", "1", "2"}
    )
    metadata.stages[Stage.ENRICHMENT] = StageProgress(
        status=StageStatus.FAILED, processed_ids={"0"}, failed_ids={"1"}, error="quota"
    )
    store = CheckpointStore(path)
    store.save(metadata)
    return store


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "notes"
    directory.mkdir()
    (directory / "one.md").write_text("First")
    (directory / "two.md").write_text("Second")
    return directory


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "Resumable notes processing" in result.output

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "status", "reset", "retry-failed"):
            assert command in result.output


class TestRun:
    def test_first_run_exports_notes(self, config_file, notes_dir, data_dir):
        result = runner.invoke(app, ["run", "--source", str(notes_dir), "-c", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "raw_export: 2 processed, 0 failed" in result.output
        assert (data_dir / "raw" / "note-0.json").exists()
        assert (data_dir / "raw" / "note-1.json").exists()

    def test_second_run_reports_completed(self, config_file, notes_dir):
        runner.invoke(app, ["run", "--source", str(notes_dir), "-c", str(config_file)])

        result = runner.invoke(app, ["run", "--source", str(notes_dir), "-c", str(config_file)])

        assert result.exit_code == 0
        assert "raw_export: already completed" in result.output

    def test_no_source_and_no_checkpoint(self, config_file):
        result = runner.invoke(app, ["run", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "No checkpoint" in result.output

    def test_invalid_stage(self, config_file):
        result = runner.invoke(app, ["run", "--stage", "bogus", "-c", str(config_file)])

        assert result.exit_code != 0
        assert "bogus" in result.output

    def _patched_lifecycle(self, results=None, error=None):
        lifecycle = MagicMock()
        lifecycle.startup = AsyncMock()
        lifecycle.shutdown = AsyncMock()
        lifecycle.run = AsyncMock(return_value=results, side_effect=error)
        return patch(
            "notes_pipeline.background.lifecycle.PipelineLifecycle", return_value=lifecycle
        ), lifecycle

    def test_failures_and_interruption(self, config_file):
        results = [
            StageRunResult(stage=Stage.RAW_EXPORT, skipped=True),
            StageRunResult(
                stage=Stage.ENRICHMENT,
                processed_count=4,
                failed=[("3", "summary failed after 4 attempts")],
                interrupted=True,
            ),
        ]
        patcher, lifecycle = self._patched_lifecycle(results=results)

        with patcher:
            result = runner.invoke(app, ["run", "-s", "enrichment", "-c", str(config_file)])

        assert result.exit_code == 130
        assert "enrichment: 4 processed, 1 failed" in result.output
        assert "3: summary failed after 4 attempts" in result.output
        assert "Run again to resume" in result.output
        lifecycle.run.assert_awaited_once_with(Stage.ENRICHMENT)
        lifecycle.shutdown.assert_awaited_once()

    def test_stage_failure_exits_1(self, config_file):
        patcher, lifecycle = self._patched_lifecycle(
            error=StageFailure("Stage 'clustering' failed: boom", stage="clustering")
        )

        with patcher:
            result = runner.invoke(app, ["run", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "boom" in result.output
        lifecycle.shutdown.assert_awaited_once()


class TestStatus:
    def test_no_checkpoint(self, config_file):
        result = runner.invoke(app, ["status", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "No checkpoint found." in result.output

    def test_shows_stages(self, config_file, checkpoint):
        result = runner.invoke(app, ["status", "-c", str(config_file)], env={"COLUMNS": "200"})

        assert result.exit_code == 0, result.output
        assert "raw_export" in result.output
        assert "enrichment" in result.output
        assert "Overall:" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("processing: {batch_size: 99}")

        result = runner.invoke(app, ["status", "-c", str(path)])

        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestReset:
    def test_reset_with_yes(self, config_file, checkpoint):
        result = runner.invoke(app, ["reset", "--yes", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "Checkpoint deleted." in result.output
        assert checkpoint.load() is None

    def test_reset_declined(self, config_file, checkpoint):
        result = runner.invoke(app, ["reset", "-c", str(config_file)], input="n\n")

        assert result.exit_code == 1
        assert checkpoint.load() is not None

    def test_reset_without_checkpoint(self, config_file):
        result = runner.invoke(app, ["reset", "-y", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "No checkpoint found." in result.output


class TestRetryFailed:
    def test_clears_failed_ids(self, config_file, checkpoint):
        result = runner.invoke(app, ["retry-failed", "enrichment", "-c", str(config_file)])

        assert result.exit_code == 0, result.output
        assert "Cleared 1 failed note(s) for enrichment" in result.output
        progress = checkpoint.load().stages[Stage.ENRICHMENT]
        assert progress.failed_ids == set()
        assert progress.processed_ids == {"0"}
        assert progress.status is StageStatus.NOT_STARTED

    def test_no_checkpoint(self, config_file):
        result = runner.invoke(app, ["retry-failed", "enrichment", "-c", str(config_file)])

        assert result.exit_code == 1
        assert "No checkpoint found." in result.output
