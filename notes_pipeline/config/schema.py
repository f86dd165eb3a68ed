# notes_pipeline/config/schema.py
"""
Pydantic configuration models for notes-pipeline.

All models use extra="ignore" to allow unknown YAML keys without crashing.
"""

from typing import Literal

from platformdirs import user_data_path
from pydantic import BaseModel, ConfigDict, Field

from notes_pipeline.pipeline.models import Stage


class OpenAIConfig(BaseModel):
    """OpenAI-compatible API configuration."""

    model_config = ConfigDict(extra="ignore")

    api_key: str | None = Field(
        default=None,
        description="API key (None = read OPENAI_API_KEY from the environment)",
    )
    base_url: str | None = Field(
        default=None, description="API base URL (None = api.openai.com)"
    )
    chat_model: str = Field(
        default="gpt-4o-mini", description="Model used for summaries and tags"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="Model used for embeddings"
    )
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    timeout: int = Field(default=60, ge=1, description="Request timeout in seconds")


class RateLimitConfig(BaseModel):
    """Token budgets per minute, one per operation type."""

    model_config = ConfigDict(extra="ignore")

    completions_tokens_per_minute: int = Field(default=90_000, ge=1)
    embeddings_tokens_per_minute: int = Field(default=150_000, ge=1)


class RetryConfig(BaseModel):
    """Exponential backoff for external calls."""

    model_config = ConfigDict(extra="ignore")

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay: float = Field(default=1.0, ge=0.0, description="Seconds")
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=8.0, ge=0.0, description="Seconds")


class ProcessingConfig(BaseModel):
    """Per-stage batching and concurrency."""

    model_config = ConfigDict(extra="ignore")

    batch_size: int = Field(
        default=5, ge=1, le=20, description="Items pulled per chunk"
    )
    concurrency_limit: int = Field(
        default=3, ge=1, le=5, description="Items processed concurrently"
    )


class StagesConfig(BaseModel):
    """Stage toggles. Disabled stages are skipped by `run`."""

    model_config = ConfigDict(extra="ignore")

    raw_export: bool = True
    enrichment: bool = True
    clustering: bool = True
    final_merge: bool = True

    def is_enabled(self, stage: Stage) -> bool:
        return getattr(self, stage.value)


class ClusteringConfig(BaseModel):
    """K-means settings."""

    model_config = ConfigDict(extra="ignore")

    num_clusters: int | None = Field(
        default=None,
        ge=1,
        description="Number of clusters (None = choose by silhouette score)",
    )
    max_clusters: int = Field(
        default=20, ge=2, description="Upper bound when choosing automatically"
    )
    seed: int = Field(default=42)


class StorageConfig(BaseModel):
    """Data directory layout root."""

    model_config = ConfigDict(extra="ignore")

    data_dir: str = Field(
        default_factory=lambda: str(user_data_path("notes-pipeline")),
        description="Root for raw/, enriched/, clusters/, final/ and checkpoints/",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class NotesPipelineConfig(BaseModel):
    """Root configuration for notes-pipeline."""

    model_config = ConfigDict(extra="ignore")

    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
