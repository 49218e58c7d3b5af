"""
Ingestion — turning fetched HTML into embedded chunks.

This module covers the per-page content stages: extraction of clean
text, sentence-bounded chunking, and batched embedding.
"""

from site_ingest.ingestion.chunker import Chunker, TextChunk, estimate_tokens
from site_ingest.ingestion.embedder import (
    Embedder,
    EmbeddingProvider,
    EmbeddingResponse,
    EmbeddingResult,
    OpenAIEmbeddingProvider,
)
from site_ingest.ingestion.extractor import ExtractionResult, Extractor

__all__ = [
    "Chunker",
    "Embedder",
    "EmbeddingProvider",
    "EmbeddingResponse",
    "EmbeddingResult",
    "ExtractionResult",
    "Extractor",
    "OpenAIEmbeddingProvider",
    "TextChunk",
    "estimate_tokens",
]
