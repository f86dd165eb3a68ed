# notes_pipeline/config/__init__.py
"""Configuration system for notes-pipeline."""

from .loader import get_config_path, load_config
from .schema import (
    ClusteringConfig,
    LoggingConfig,
    NotesPipelineConfig,
    OpenAIConfig,
    ProcessingConfig,
    RateLimitConfig,
    RetryConfig,
    StagesConfig,
    StorageConfig,
)

__all__ = [
    "NotesPipelineConfig",
    "OpenAIConfig",
    "RateLimitConfig",
    "RetryConfig",
    "ProcessingConfig",
    "StagesConfig",
    "ClusteringConfig",
    "StorageConfig",
    "LoggingConfig",
    "load_config",
    "get_config_path",
]
