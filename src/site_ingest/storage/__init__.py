"""
Storage — entity models and the repository interfaces the pipeline writes to.

Public surface
--------------
- :class:`Website`, :class:`CrawlSession`, :class:`Page`, :class:`Chunk` — entities.
- :class:`WebsiteRepository`, :class:`CrawlSessionRepository`,
  :class:`PageRepository`, :class:`ChunkRepository` — abstract backends.
- ``InMemory*Repository`` — thread-safe local implementations.
- :class:`ChromaChunkRepository` — Chroma-backed chunk store (lazy import).
"""

from site_ingest.storage.base import (
    ChunkRepository,
    CrawlSessionRepository,
    PageRepository,
    WebsiteRepository,
)
from site_ingest.storage.memory import (
    InMemoryChunkRepository,
    InMemoryCrawlSessionRepository,
    InMemoryPageRepository,
    InMemoryWebsiteRepository,
)
from site_ingest.storage.models import (
    Chunk,
    CrawlSession,
    DiscoveryMethod,
    Page,
    PageStatus,
    SessionStatus,
    Website,
)

__all__ = [
    "ChromaChunkRepository",
    "Chunk",
    "ChunkRepository",
    "CrawlSession",
    "CrawlSessionRepository",
    "DiscoveryMethod",
    "InMemoryChunkRepository",
    "InMemoryCrawlSessionRepository",
    "InMemoryPageRepository",
    "InMemoryWebsiteRepository",
    "Page",
    "PageRepository",
    "PageStatus",
    "SessionStatus",
    "Website",
    "WebsiteRepository",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaChunkRepository to avoid pulling in chromadb at import time."""
    if name == "ChromaChunkRepository":
        from site_ingest.storage.chroma_store import ChromaChunkRepository

        return ChromaChunkRepository
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
