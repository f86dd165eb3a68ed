# notes_pipeline/llm/factory.py
"""Factory for creating the configured enrichment service."""

import asyncio
import os

from openai import AsyncOpenAI

from notes_pipeline.config.schema import NotesPipelineConfig
from notes_pipeline.errors import ConfigurationError

from .client import OpenAIEnrichmentService
from .rate_limit import TokenRateLimiter
from .retry import RateLimitedRetryClient, RetryPolicy


def create_enrichment_service(
    config: NotesPipelineConfig,
    cancel_event: asyncio.Event | None = None,
) -> OpenAIEnrichmentService:
    """
    Create the OpenAI enrichment service from config.

    Completions and embeddings get separate limiters sized from
    config.rate_limits; both share the retry policy from config.retry.

    Args:
        config: Root NotesPipelineConfig
        cancel_event: Shutdown event; once set, no new API calls are issued

    Returns:
        OpenAIEnrichmentService

    Raises:
        ConfigurationError: If no API key is configured or in OPENAI_API_KEY
    """
    api_key = config.openai.api_key or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "No OpenAI API key: set openai.api_key in the config file or OPENAI_API_KEY"
        )

    policy = RetryPolicy(
        max_retries=config.retry.max_retries,
        initial_delay=config.retry.initial_delay,
        backoff_factor=config.retry.backoff_factor,
        max_delay=config.retry.max_delay,
    )
    completions = RateLimitedRetryClient(
        TokenRateLimiter(
            config.rate_limits.completions_tokens_per_minute,
            name="completions",
            cancel_event=cancel_event,
        ),
        policy,
        cancel_event=cancel_event,
    )
    embeddings = RateLimitedRetryClient(
        TokenRateLimiter(
            config.rate_limits.embeddings_tokens_per_minute,
            name="embeddings",
            cancel_event=cancel_event,
        ),
        policy,
        cancel_event=cancel_event,
    )

    # Every attempt has to pass through the limiter
    client = AsyncOpenAI(
        api_key=api_key,
        base_url=config.openai.base_url,
        timeout=config.openai.timeout,
        max_retries=0,
    )
    return OpenAIEnrichmentService(
        client,
        completions,
        embeddings,
        chat_model=config.openai.chat_model,
        embedding_model=config.openai.embedding_model,
        temperature=config.openai.temperature,
    )
