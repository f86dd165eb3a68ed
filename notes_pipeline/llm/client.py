# notes_pipeline/llm/client.py
"""OpenAI-backed enrichment service (summaries, tags, embeddings)."""

import json
import logging
import math
from typing import Protocol

from openai import AsyncOpenAI

from notes_pipeline.errors import ItemError

from .retry import RateLimitedRetryClient

logger = logging.getLogger(__name__)

# Prompt overhead added to the content estimate
SUMMARY_PROMPT_BUFFER = 100
TAGS_PROMPT_BUFFER = 100
COMBINED_PROMPT_BUFFER = 150

SUMMARY_PROMPT = (
    "You are a note summarization assistant. Create a concise summary of the "
    "following note content in 2-3 sentences."
)
TAGS_PROMPT = (
    "Extract 3-5 relevant tags from the following note content. Return only the "
    "tags as a comma-separated list, without any additional text."
)
COMBINED_PROMPT = (
    "You are helping organize a collection of personal notes. For the input text, "
    "provide a 1-2 sentence summary and extract 3-5 relevant tags. Respond in JSON "
    'format: {"summary": "<SUMMARY>", "tags": "<TAG1, TAG2, TAG3>"}'
)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def split_tags(raw: str | list | None) -> list[str]:
    """Normalize a comma-separated string (or list) of tags."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else [str(tag) for tag in raw]
    return [tag.strip() for tag in items if tag.strip()]


class EnrichmentService(Protocol):
    """What the enrichment stage needs from an external model provider."""

    async def summarize_and_tag(self, content: str) -> tuple[str, list[str]]: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEnrichmentService:
    """
    Enrichment through an OpenAI-compatible API.

    Completions and embeddings each go through their own RateLimitedRetryClient,
    so they draw on independent token budgets.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        completions: RateLimitedRetryClient,
        embeddings: RateLimitedRetryClient,
        chat_model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        temperature: float = 0.3,
    ):
        """
        Initialize enrichment service.

        Args:
            client:          AsyncOpenAI client
            completions:     Retry client guarding chat completion calls
            embeddings:      Retry client guarding embedding calls
            chat_model:      Model used for summaries and tags
            embedding_model: Model used for embeddings
            temperature:     Sampling temperature for completions
        """
        self._client = client
        self._completions = completions
        self._embeddings = embeddings
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.temperature = temperature

    async def _complete(
        self,
        system_prompt: str,
        content: str,
        max_tokens: int,
        buffer: int,
        description: str,
        json_mode: bool = False,
    ) -> str:
        extra = {"response_format": {"type": "json_object"}} if json_mode else {}

        async def _operation() -> str:
            response = await self._client.chat.completions.create(
                model=self.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": content},
                ],
                temperature=self.temperature,
                max_tokens=max_tokens,
                **extra,
            )
            if not response.choices:
                return ""
            return response.choices[0].message.content or ""

        return await self._completions.call(
            _operation, estimate_tokens(content) + buffer, description
        )

    async def generate_summary(self, content: str) -> str:
        """2-3 sentence summary of a note."""
        return await self._complete(
            SUMMARY_PROMPT, content, 150, SUMMARY_PROMPT_BUFFER, "summary"
        )

    async def extract_tags(self, content: str) -> list[str]:
        """3-5 tags for a note."""
        text = await self._complete(TAGS_PROMPT, content, 50, TAGS_PROMPT_BUFFER, "tags")
        return split_tags(text)

    async def summarize_and_tag(self, content: str) -> tuple[str, list[str]]:
        """
        Summary and tags from a single JSON-mode completion.

        Falls back to separate summary and tag calls when the reply is not
        a JSON object.

        Returns:
            (summary, tags)

        Raises:
            ExhaustedRetries: If a call kept failing
        """
        text = await self._complete(
            COMBINED_PROMPT,
            content,
            200,
            COMBINED_PROMPT_BUFFER,
            "summary+tags",
            json_mode=True,
        )

        try:
            result = json.loads(text or '{"summary": "", "tags": ""}')
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON for summary+tags ({e}); using separate calls")
            result = None
        if not isinstance(result, dict):
            if result is not None:
                logger.warning(
                    f"Expected a JSON object for summary+tags, got {type(result).__name__}; "
                    f"using separate calls"
                )
            return await self.generate_summary(content), await self.extract_tags(content)

        return str(result.get("summary") or ""), split_tags(result.get("tags"))

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embeddings for a batch of texts, in input order.

        Raises:
            ItemError: If the API returned a different number of vectors
            ExhaustedRetries: If the call kept failing
        """
        if not texts:
            return []

        async def _operation() -> list[list[float]]:
            response = await self._client.embeddings.create(
                model=self.embedding_model,
                input=texts,
            )
            return [list(item.embedding) for item in response.data]

        estimated = sum(estimate_tokens(text) for text in texts)
        vectors = await self._embeddings.call(_operation, estimated, "embedding")
        if len(vectors) != len(texts):
            raise ItemError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def close(self) -> None:
        await self._client.close()
