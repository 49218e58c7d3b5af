"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib
from urllib.parse import urlsplit

import pytest

from site_ingest.crawling.discovery import DiscoveryEngine
from site_ingest.crawling.fetcher import FetchResult
from site_ingest.crawling.urls import normalize_url
from site_ingest.errors import EmbeddingFailure, FetchFailure
from site_ingest.ingestion.chunker import Chunker
from site_ingest.ingestion.embedder import Embedder, EmbeddingProvider, EmbeddingResponse
from site_ingest.ingestion.extractor import Extractor
from site_ingest.pipeline.orchestrator import CrawlPipeline
from site_ingest.storage.memory import (
    InMemoryChunkRepository,
    InMemoryCrawlSessionRepository,
    InMemoryPageRepository,
    InMemoryWebsiteRepository,
)

DIMS = 1536


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeFetcher:
    """Serves canned bodies keyed by normalised URL; anything else is a 404."""

    def __init__(
        self,
        pages: dict[str, str] | None = None,
        *,
        failures: dict[str, FetchFailure] | None = None,
        content_types: dict[str, str] | None = None,
        unreachable: bool = False,
    ) -> None:
        self.pages = {normalize_url(k): v for k, v in (pages or {}).items()}
        self.failures = {normalize_url(k): v for k, v in (failures or {}).items()}
        self.content_types = {normalize_url(k): v for k, v in (content_types or {}).items()}
        self.unreachable = unreachable
        self.calls: list[str] = []

    def fetch(self, url: str, *, accept: tuple[str, ...] = (), timeout: float | None = None) -> FetchResult:
        self.calls.append(url)
        key = normalize_url(url)
        if self.unreachable:
            raise FetchFailure(url, "Domain not found / connection refused", transient=True)
        if key in self.failures:
            raise self.failures[key]
        if key not in self.pages:
            raise FetchFailure(url, "HTTP 404: Not Found", status_code=404)
        return FetchResult(
            url=url,
            final_url=url,
            status_code=200,
            html=self.pages[key],
            content_type=self.content_types.get(key, "text/html"),
        )


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic vectors; one token per word.  Optionally fails on given calls."""

    def __init__(self, dims: int = DIMS, *, fail_on_calls: set[int] | None = None, transient: bool = False) -> None:
        self.model = "text-embedding-3-small"
        self.dims = dims
        self.fail_on_calls = fail_on_calls or set()
        self.transient = transient
        self.calls = 0

    def embed_batch(self, texts: list[str]) -> EmbeddingResponse:
        self.calls += 1
        if self.calls in self.fail_on_calls:
            raise EmbeddingFailure("provider unavailable", transient=self.transient)
        vectors = []
        for text in texts:
            seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
            vectors.append([((seed >> (i % 24)) & 0xFF) / 255.0 for i in range(self.dims)])
        return EmbeddingResponse(vectors=vectors, total_tokens=sum(len(t.split()) for t in texts))


# ── Content helpers ─────────────────────────────────────────────────────


def prose(sentences: int, *, topic: str = "Sentence") -> str:
    """*sentences* eight-word sentences joined by spaces."""
    return " ".join(f"{topic} number {i} has exactly eight words total." for i in range(sentences))


def html_page(title: str, sentences: int = 60, links: list[str] | None = None, nav: list[str] | None = None) -> str:
    paragraphs = []
    for start in range(0, sentences, 10):
        count = min(10, sentences - start)
        paragraphs.append(f"<p>{prose(count, topic=title.split()[0])}</p>")
    nav_html = "".join(f'<a href="{href}">{href}</a>' for href in nav or [])
    link_html = "".join(f'<li><a href="{href}">Read {href}</a></li>' for href in links or [])
    return (
        f"<html lang='en'><head><title>{title} | Example Docs</title>"
        f"<meta name='description' content='About {title}'></head>"
        f"<body><nav>{nav_html}</nav><main><h1>{title}</h1>{''.join(paragraphs)}"
        f"<ul>{link_html}</ul></main><footer>Copyright footer text</footer></body></html>"
    )


def site_root(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def make_pipeline():
    """Factory building a pipeline around a fetcher and provider with in-memory storage."""

    def _make(
        fetcher: FakeFetcher,
        provider: EmbeddingProvider | None = None,
        *,
        batch_size: int = 100,
        max_concurrency: int = 3,
    ) -> CrawlPipeline:
        embedder = Embedder(
            provider or FakeEmbeddingProvider(),
            dimensions=DIMS,
            batch_size=batch_size,
            max_retries=1,
            backoff_seconds=0,
            batch_delay_seconds=0,
        )
        return CrawlPipeline(
            websites=InMemoryWebsiteRepository(),
            sessions=InMemoryCrawlSessionRepository(),
            pages=InMemoryPageRepository(),
            chunks=InMemoryChunkRepository(),
            fetcher=fetcher,
            discovery=DiscoveryEngine(fetcher),
            extractor=Extractor(),
            chunker=Chunker(300, 400),
            embedder=embedder,
            max_concurrency=max_concurrency,
        )

    return _make
