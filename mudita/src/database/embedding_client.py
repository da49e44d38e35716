"""
Mudita - Embedding Client
==========================
Async wrapper around the Gemini embedding endpoint (``google-genai``)
that turns text into fixed-dimension vectors.

Retry policy
------------
Up to ``EMBEDDING_MAX_RETRIES`` attempts with a *linear* back-off
(``attempt × EMBEDDING_RETRY_DELAY``) on rate limits, 5xx responses and
connection failures.  Any other 4xx fails immediately.  Exhaustion
raises ``EmbeddingProviderError`` chained to the last provider error.

The returned vector length is always validated against
``EMBEDDING_DIMENSION``; a mismatch is a hard ``InvalidEmbeddingError``.

Usage:
    client = EmbeddingClient()
    vector = await client.embed("오늘 친구와 카페에 갔다")
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol, runtime_checkable

from mudita.config.settings import settings
from mudita.src.core.errors import ConfigurationError, EmbeddingProviderError, EmptyInputError, InvalidEmbeddingError, is_retryable
from mudita.src.utils.logger import get_logger

logger = get_logger(__name__)


# ── Embedder Protocol ─────────────────────────────────────────────────

@runtime_checkable
class Embedder(Protocol):
    """Anything that can turn a text into an embedding vector."""

    async def embed(self, text: str) -> list[float]: ...


class EmbeddingClient:
    """
    Gemini embedding client with bounded retries.

    Parameters
    ----------
    client
        A ``google.genai.Client`` (or any object exposing
        ``aio.models.embed_content``).  Built from settings when omitted.
    model, dimension, max_retries, retry_delay
        Overrides for the corresponding ``EMBEDDING_*`` settings.

    Raises
    ------
    ConfigurationError
        If no client is injected and ``GOOGLE_API_KEY`` is not configured.
    """

    __slots__ = ("_client", "_model", "_dimension", "_max_retries", "_retry_delay")

    def __init__(self, client: Any | None = None, model: str | None = None, dimension: int | None = None, max_retries: int | None = None, retry_delay: float | None = None) -> None:
        self._client = client if client is not None else self._init_client()
        self._model: str = model or settings.EMBEDDING_MODEL
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._max_retries: int = settings.EMBEDDING_MAX_RETRIES if max_retries is None else max(1, max_retries)
        self._retry_delay: float = settings.EMBEDDING_RETRY_DELAY if retry_delay is None else retry_delay


    @staticmethod
    def _init_client() -> Any:
        """Create the ``google-genai`` client with the configured timeout."""
        if settings.GOOGLE_API_KEY is None:
            raise ConfigurationError("GOOGLE_API_KEY is not configured; embeddings are unavailable.")

        from google import genai
        from google.genai import types

        client = genai.Client(api_key=settings.GOOGLE_API_KEY.get_secret_value(), http_options=types.HttpOptions(timeout=int(settings.EMBEDDING_TIMEOUT * 1000)))
        logger.info("[EMBED] Gemini client initialised: %s (dim=%d)", settings.EMBEDDING_MODEL, settings.EMBEDDING_DIMENSION)
        return client


    @property
    def dimension(self) -> int:
        return self._dimension


    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises
        ------
        EmptyInputError
            If *text* is empty or whitespace only.
        EmbeddingProviderError
            On a terminal provider error or after exhausting retries.
        InvalidEmbeddingError
            If the provider returns a vector of the wrong length.
        """
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed empty text.")

        t_start = time.perf_counter()
        vector = await self._embed_with_retry(text)

        if len(vector) != self._dimension:
            logger.error("[EMBED] Dimension mismatch: expected %d, got %d", self._dimension, len(vector))
            raise InvalidEmbeddingError(self._dimension, len(vector))

        logger.debug("[EMBED] %d chars embedded in %.1fms", len(text), (time.perf_counter() - t_start) * 1000)
        return vector


    async def _embed_with_retry(self, text: str) -> list[float]:
        last_error: BaseException | None = None

        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._request(text)
            except InvalidEmbeddingError:
                raise
            except Exception as exc:
                if not is_retryable(exc):
                    logger.error("[EMBED] Non-retryable provider error: %s", exc)
                    raise EmbeddingProviderError(f"Embedding request failed: {exc}", attempt, exc) from exc

                last_error = exc
                logger.warning("[EMBED] Attempt %d/%d failed: %s", attempt, self._max_retries, exc)
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_delay * attempt)

        logger.error("[EMBED] Giving up after %d attempts.", self._max_retries)
        raise EmbeddingProviderError(f"Embedding failed after {self._max_retries} attempts: {last_error}", self._max_retries, last_error) from last_error


    async def _request(self, text: str) -> list[float]:
        from google.genai import types

        response = await self._client.aio.models.embed_content(model=self._model, contents=text, config=types.EmbedContentConfig(output_dimensionality=self._dimension))
        embeddings = getattr(response, "embeddings", None)
        if not embeddings or embeddings[0].values is None:
            raise InvalidEmbeddingError(self._dimension, 0)
        return [float(v) for v in embeddings[0].values]


    def __repr__(self) -> str:
        return f"EmbeddingClient(model='{self._model}', dim={self._dimension})"
