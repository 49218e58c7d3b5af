"""Chroma implementation of the chunk repository."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import chromadb

from site_ingest.crawling.urls import normalize_url
from site_ingest.errors import PersistenceFailure
from site_ingest.storage.base import ChunkRepository
from site_ingest.storage.models import Chunk

logger = logging.getLogger(__name__)


def _chunk_metadata(chunk: Chunk) -> dict[str, Any]:
    """Flatten a chunk into Chroma metadata (str/int/float/bool values only)."""
    meta: dict[str, Any] = {
        "page_id": chunk.page_id,
        "website_id": chunk.website_id,
        "source": chunk.url,
        "url_key": normalize_url(chunk.url),
        "sequence_index": chunk.sequence_index,
        "token_count": chunk.token_count,
        "quality_score": float(chunk.quality_score),
        "created_at": chunk.created_at.isoformat(),
    }
    if chunk.embedding_model:
        meta["embedding_model"] = chunk.embedding_model
    return meta


class ChromaChunkRepository(ChunkRepository):
    """Chroma-backed chunk store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client; when omitted an ``HttpClient`` is created.
    upsert_batch_size:
        Maximum records sent per ``upsert`` call.
    """

    def __init__(
        self,
        collection_name: str = "site_ingest_chunks",
        *,
        host: str = "localhost",
        port: int = 8000,
        client: Any | None = None,
        upsert_batch_size: int = 500,
    ) -> None:
        self.collection_name = collection_name
        self._client = client or chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self.upsert_batch_size = upsert_batch_size

    # -- ChunkRepository overrides --------------------------------------------

    def bulk_insert(self, chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        missing = [c.id for c in chunks if c.embedding is None]
        if missing:
            raise PersistenceFailure(f"Chunks without embeddings cannot be stored: {missing[:3]}")

        try:
            for website_id, url_key in sorted({(c.website_id, normalize_url(c.url)) for c in chunks}):
                self._collection.delete(where={"$and": [{"website_id": website_id}, {"url_key": url_key}]})

            for start in range(0, len(chunks), self.upsert_batch_size):
                batch = chunks[start : start + self.upsert_batch_size]
                self._collection.upsert(
                    ids=[c.id for c in batch],
                    embeddings=[c.embedding for c in batch],
                    documents=[c.text for c in batch],
                    metadatas=[_chunk_metadata(c) for c in batch],
                )
        except Exception as exc:
            raise PersistenceFailure(f"Chroma upsert failed: {exc}") from exc

        logger.debug("Upserted %d chunks into %s", len(chunks), self.collection_name)
        return len(chunks)

    def count_by_pages(self, page_ids: Iterable[str]) -> int:
        ids = list(page_ids)
        if not ids:
            return 0
        try:
            result = self._collection.get(where={"page_id": {"$in": ids}}, include=[])
        except Exception as exc:
            raise PersistenceFailure(f"Chroma count failed: {exc}") from exc
        return len(result.get("ids", []))

    def list_by_page(self, page_id: str) -> list[Chunk]:
        try:
            result = self._collection.get(
                where={"page_id": page_id},
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as exc:
            raise PersistenceFailure(f"Chroma read failed: {exc}") from exc
        embeddings = result.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(result.get("ids", []))

        chunks: list[Chunk] = []
        for chunk_id, text, meta, vector in zip(
            result.get("ids", []), result.get("documents", []), result.get("metadatas", []), embeddings
        ):
            meta = meta or {}
            chunks.append(
                Chunk(
                    id=chunk_id,
                    page_id=meta.get("page_id", page_id),
                    website_id=meta.get("website_id", ""),
                    url=meta.get("source", ""),
                    sequence_index=int(meta.get("sequence_index", 0)),
                    text=text or "",
                    token_count=int(meta.get("token_count", 0)),
                    embedding=[float(x) for x in vector] if vector is not None else None,
                    embedding_model=meta.get("embedding_model"),
                    quality_score=float(meta.get("quality_score", 0.0)),
                )
            )
        return sorted(chunks, key=lambda c: c.sequence_index)

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
