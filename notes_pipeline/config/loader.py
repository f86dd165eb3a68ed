# notes_pipeline/config/loader.py
"""
Configuration loading with auto-creation of defaults.

Uses platformdirs for cross-platform config directory management.
"""

import logging
from pathlib import Path

import yaml
from platformdirs import user_config_path
from pydantic import ValidationError

from notes_pipeline.errors import ConfigurationError

from .schema import NotesPipelineConfig

logger = logging.getLogger(__name__)


def get_config_path() -> Path:
    """Get path to config file, ensuring config directory exists."""
    config_dir = user_config_path("notes-pipeline", ensure_exists=True)
    return config_dir / "config.yaml"


def load_config(path: str | Path | None = None) -> NotesPipelineConfig:
    """
    Load configuration from YAML file.

    If the config file doesn't exist, creates it with defaults.

    Args:
        path: Config file path (None = platform config directory)

    Returns:
        Validated NotesPipelineConfig

    Raises:
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    config_path = Path(path) if path is not None else get_config_path()

    if not config_path.exists():
        default_config = NotesPipelineConfig()
        config_dict = default_config.model_dump(mode="json")

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with config_path.open("w") as f:
                yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigurationError(f"Cannot write default config to {config_path}: {e}") from e

        logger.info(f"Created default config at {config_path}")
        return default_config

    try:
        with config_path.open("r") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    # An empty file loads as None
    if config_data is None:
        config_data = {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Config {config_path} must be a mapping at the top level")

    try:
        config = NotesPipelineConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {config_path}: {e}") from e

    logger.info(f"Loaded config from {config_path}")
    return config
