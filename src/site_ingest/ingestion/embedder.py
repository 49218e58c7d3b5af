"""Batched chunk embedding with retry and token-based cost accounting.

The provider is pluggable: :class:`OpenAIEmbeddingProvider` talks to the
OpenAI embeddings API (or any OpenAI-compatible server when
``base_url`` is set), and tests substitute a deterministic fake.
"""

from __future__ import annotations

import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import openai
from openai import OpenAI

from site_ingest.errors import EmbeddingDimensionError, EmbeddingFailure

logger = logging.getLogger(__name__)

# USD per 1K tokens.
EMBEDDING_PRICES_PER_1K: dict[str, float] = {
    "text-embedding-3-small": 0.00002,
    "text-embedding-3-large": 0.00013,
    "text-embedding-ada-002": 0.0001,
}
DEFAULT_MODEL = "text-embedding-3-small"


def price_per_1k(model: str) -> float:
    """Unit price for *model*, falling back to the default model's price."""
    if model not in EMBEDDING_PRICES_PER_1K:
        logger.warning("No price known for %s; using %s pricing", model, DEFAULT_MODEL)
    return EMBEDDING_PRICES_PER_1K.get(model, EMBEDDING_PRICES_PER_1K[DEFAULT_MODEL])


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def validate_embedding(vector: list[float] | None, dimensions: int) -> bool:
    """True when *vector* has the expected length and only finite values."""
    return (
        vector is not None
        and len(vector) == dimensions
        and all(isinstance(x, (int, float)) and math.isfinite(x) for x in vector)
    )


# ── Providers ───────────────────────────────────────────────────────────


@dataclass
class EmbeddingResponse:
    """Vectors for one batch plus the provider-reported token usage."""

    vectors: list[list[float]]
    total_tokens: int


class EmbeddingProvider(ABC):
    """Backend-agnostic embedding interface.

    Implementations raise :class:`EmbeddingFailure` with ``transient=True``
    for rate limits and temporary outages so the :class:`Embedder` can
    retry them.
    """

    model: str

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> EmbeddingResponse:
        """Embed *texts*, returning vectors in input order."""
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI (or OpenAI-compatible) embeddings endpoint.

    Parameters
    ----------
    model:
        Embedding model identifier.
    dimensions:
        Requested vector length (sent for ``text-embedding-3-*`` models).
    api_key:
        API key; a dummy value is used for self-hosted servers.
    base_url:
        Leave empty for OpenAI cloud.
    client:
        Pre-built ``openai.OpenAI`` client.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        dimensions: int = 1536,
        api_key: str = "",
        base_url: str = "",
        timeout: float = 60.0,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        if client is None:
            kwargs: dict = {"timeout": timeout, "max_retries": 0}
            if base_url:
                logger.info("Using OpenAI-compatible embeddings endpoint: %s", base_url)
                kwargs["base_url"] = base_url
                # Self-hosted servers don't need a real key; the client requires a non-empty value.
                kwargs["api_key"] = api_key or "EMPTY"
            else:
                kwargs["api_key"] = api_key
            client = OpenAI(**kwargs)
        self._client = client

    def embed_batch(self, texts: list[str]) -> EmbeddingResponse:
        kwargs: dict = {"model": self.model, "input": texts}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        try:
            resp = self._client.embeddings.create(**kwargs)
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as exc:
            raise EmbeddingFailure(f"{type(exc).__name__}: {exc}", transient=True) from exc
        except openai.OpenAIError as exc:
            raise EmbeddingFailure(f"{type(exc).__name__}: {exc}") from exc

        data = sorted(resp.data, key=lambda item: item.index)
        usage = getattr(resp, "usage", None)
        return EmbeddingResponse(
            vectors=[list(item.embedding) for item in data],
            total_tokens=usage.total_tokens if usage else 0,
        )


# ── Embedder ────────────────────────────────────────────────────────────


@dataclass
class EmbeddingResult:
    """Vectors aligned 1:1 with the input; ``None`` where a batch failed."""

    vectors: list[list[float] | None]
    model: str
    total_tokens: int = 0
    cost: float = 0.0
    failed_indices: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def embedded_count(self) -> int:
        return sum(1 for v in self.vectors if v is not None)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed_indices


class Embedder:
    """Embed texts in batches with retry and cost accounting.

    Parameters
    ----------
    provider:
        Embedding backend.
    dimensions:
        Expected vector length; a mismatch raises
        :class:`EmbeddingDimensionError` immediately.
    batch_size:
        Texts per provider request.
    max_retries:
        Retries per batch for transient provider errors.
    backoff_seconds:
        Base wait; retry *n* waits ``backoff_seconds * 2 ** (n - 1)``.
    batch_delay_seconds:
        Pause between consecutive batches.
    max_chars:
        Each text is truncated to this many characters.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        dimensions: int = 1536,
        batch_size: int = 100,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        batch_delay_seconds: float = 0.1,
        max_chars: int = 8000,
    ) -> None:
        self.provider = provider
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.batch_delay_seconds = batch_delay_seconds
        self.max_chars = max_chars
        self.unit_price = price_per_1k(provider.model)

    @property
    def model(self) -> str:
        return self.provider.model

    def embed(self, texts: list[str]) -> EmbeddingResult:
        """Embed *texts*; failed batches leave ``None`` at their positions.

        Raises
        ------
        EmbeddingDimensionError
            When the provider returns vectors of the wrong length.
        """
        result = EmbeddingResult(vectors=[None] * len(texts), model=self.model)
        prepared = [self._prepare(t) for t in texts]

        for start in range(0, len(prepared), self.batch_size):
            batch = prepared[start : start + self.batch_size]
            if start:
                time.sleep(self.batch_delay_seconds)
            try:
                response = self._embed_with_retry(batch)
            except EmbeddingFailure as exc:
                if isinstance(exc, EmbeddingDimensionError):
                    raise
                positions = list(range(start, start + len(batch)))
                result.failed_indices.extend(positions)
                result.errors.append(str(exc))
                logger.warning("Embedding batch %d-%d failed: %s", start, start + len(batch), exc)
                continue

            for offset, vector in enumerate(response.vectors):
                result.vectors[start + offset] = vector
            result.total_tokens += response.total_tokens

        result.cost = result.total_tokens / 1000 * self.unit_price
        logger.debug(
            "Embedded %d/%d texts (%d tokens, $%.6f)",
            result.embedded_count, len(texts), result.total_tokens, result.cost,
        )
        return result

    def _embed_with_retry(self, batch: list[str]) -> EmbeddingResponse:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.provider.embed_batch(batch)
                break
            except EmbeddingFailure as exc:
                if not exc.transient or attempt == attempts:
                    raise
                wait = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning("Retry %d/%d for embedding batch (wait %.1fs): %s",
                               attempt, self.max_retries, wait, exc)
                time.sleep(wait)

        if len(response.vectors) != len(batch):
            raise EmbeddingFailure(
                f"Provider returned {len(response.vectors)} vectors for {len(batch)} inputs"
            )
        for vector in response.vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingDimensionError(
                    f"Expected {self.dimensions}-dimensional vectors, got {len(vector)}"
                )
        return response

    def _prepare(self, text: str) -> str:
        return re.sub(r"\s+", " ", text).strip()[: self.max_chars]
