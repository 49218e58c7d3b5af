"""Build a fully wired :class:`CrawlPipeline` from settings."""

from __future__ import annotations

import logging

from site_ingest.config import Settings
from site_ingest.crawling.discovery import DiscoveryEngine
from site_ingest.crawling.fetcher import Fetcher
from site_ingest.ingestion.chunker import Chunker
from site_ingest.ingestion.embedder import Embedder, EmbeddingProvider, OpenAIEmbeddingProvider
from site_ingest.ingestion.extractor import Extractor
from site_ingest.pipeline.orchestrator import CrawlPipeline
from site_ingest.storage.base import ChunkRepository
from site_ingest.storage.memory import (
    InMemoryChunkRepository,
    InMemoryCrawlSessionRepository,
    InMemoryPageRepository,
    InMemoryWebsiteRepository,
)

logger = logging.getLogger(__name__)


def build_chunk_repository(settings: Settings) -> ChunkRepository:
    if settings.storage_backend == "memory":
        return InMemoryChunkRepository()
    if settings.storage_backend == "chroma":
        from site_ingest.storage.chroma_store import ChromaChunkRepository

        logger.info("Storing chunks in Chroma at %s:%d", settings.chroma_host, settings.chroma_port)
        return ChromaChunkRepository(
            settings.chroma_collection,
            host=settings.chroma_host,
            port=settings.chroma_port,
        )
    raise ValueError(f"Unsupported storage_backend={settings.storage_backend!r}")


def build_pipeline(
    settings: Settings,
    *,
    provider: EmbeddingProvider | None = None,
    chunks: ChunkRepository | None = None,
) -> CrawlPipeline:
    """Construct every collaborator once and hand them to the orchestrator.

    Parameters
    ----------
    settings:
        Process configuration.
    provider:
        Embedding backend override; defaults to the OpenAI provider.
    chunks:
        Chunk repository override; defaults to ``settings.storage_backend``.
    """
    fetcher = Fetcher(
        timeout=settings.fetch_timeout_seconds,
        max_retries=settings.fetch_max_retries,
        max_redirects=settings.fetch_max_redirects,
        backoff_seconds=settings.fetch_backoff_seconds,
        user_agent=settings.user_agent,
    )
    provider = provider or OpenAIEmbeddingProvider(
        settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        api_key=settings.openai_api_key,
        base_url=settings.embedding_base_url,
    )
    embedder = Embedder(
        provider,
        dimensions=settings.embedding_dimensions,
        batch_size=settings.embedding_batch_size,
        max_retries=settings.embedding_max_retries,
        batch_delay_seconds=settings.embedding_batch_delay_seconds,
        max_chars=settings.embedding_max_chars,
    )
    return CrawlPipeline(
        websites=InMemoryWebsiteRepository(),
        sessions=InMemoryCrawlSessionRepository(),
        pages=InMemoryPageRepository(),
        chunks=chunks or build_chunk_repository(settings),
        fetcher=fetcher,
        discovery=DiscoveryEngine(fetcher, timeout=settings.discovery_timeout_seconds),
        extractor=Extractor(),
        chunker=Chunker(settings.chunk_min_tokens, settings.chunk_max_tokens),
        embedder=embedder,
        max_concurrency=settings.max_concurrency,
    )
