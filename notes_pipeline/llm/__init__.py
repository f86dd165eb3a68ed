# notes_pipeline/llm/__init__.py
"""External model access: rate limiting, retries and the OpenAI enrichment service."""

from .client import EnrichmentService, OpenAIEnrichmentService, estimate_tokens
from .factory import create_enrichment_service
from .rate_limit import TokenRateLimiter
from .retry import RateLimitedRetryClient, RetryPolicy, is_retryable

__all__ = [
    "EnrichmentService",
    "OpenAIEnrichmentService",
    "RateLimitedRetryClient",
    "RetryPolicy",
    "TokenRateLimiter",
    "create_enrichment_service",
    "estimate_tokens",
    "is_retryable",
]
