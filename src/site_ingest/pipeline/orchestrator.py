"""Crawl-to-embedding orchestration.

:class:`CrawlPipeline` is built once with all of its collaborators and
shared by request handlers.  Each run resolves the website, opens a
session, optionally discovers pages, then runs
fetch → extract → chunk → embed → persist for every page on a bounded
thread pool.  Page failures are recorded on the page and never abort
the run.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from urllib.parse import urldefrag

from site_ingest.crawling.discovery import DiscoveryEngine
from site_ingest.crawling.fetcher import Fetcher
from site_ingest.crawling.urls import base_url_of, host_of, normalize_url
from site_ingest.errors import (
    EmbeddingFailure,
    PersistenceFailure,
    PipelineError,
    ValidationFailure,
)
from site_ingest.ingestion.chunker import Chunker
from site_ingest.ingestion.embedder import Embedder
from site_ingest.ingestion.extractor import Extractor
from site_ingest.pipeline.models import (
    AddPageRequest,
    FullCrawlRequest,
    PipelineResult,
    PipelineStage,
    PipelineSummary,
    ProcessedPageSummary,
    validate_request,
)
from site_ingest.pipeline.progress import DISCOVERY_DONE, ProgressReporter, ProgressSink
from site_ingest.pipeline.session import SessionTracker
from site_ingest.storage.base import (
    ChunkRepository,
    CrawlSessionRepository,
    PageRepository,
    WebsiteRepository,
)
from site_ingest.storage.models import Chunk, CrawlSession, DiscoveryMethod, Page, PageStatus, Website

logger = logging.getLogger(__name__)


def chunk_id(website_id: str, url: str, index: int) -> str:
    """Deterministic chunk identifier: re-ingesting a page overwrites, never duplicates."""
    digest = hashlib.sha256(f"{website_id}|{normalize_url(url)}".encode()).hexdigest()[:16]
    return f"{digest}_{index}"


@dataclass
class _PageOutcome:
    page: Page
    chunks_created: int = 0
    embeddings_generated: int = 0
    cost: float = 0.0
    elapsed_ms: int = 0


class CrawlPipeline:
    """Sequence discovery and per-page stages, and aggregate the result.

    Parameters
    ----------
    websites, sessions, pages, chunks:
        Repository implementations.
    fetcher, discovery, extractor, chunker, embedder:
        Stage components.
    max_concurrency:
        Pages processed in parallel.
    """

    def __init__(
        self,
        *,
        websites: WebsiteRepository,
        sessions: CrawlSessionRepository,
        pages: PageRepository,
        chunks: ChunkRepository,
        fetcher: Fetcher,
        discovery: DiscoveryEngine,
        extractor: Extractor,
        chunker: Chunker,
        embedder: Embedder,
        max_concurrency: int = 4,
    ) -> None:
        self._websites = websites
        self._pages = pages
        self._chunks = chunks
        self._fetcher = fetcher
        self._discovery = discovery
        self._extractor = extractor
        self._chunker = chunker
        self._embedder = embedder
        self.max_concurrency = max(1, max_concurrency)
        self.tracker = SessionTracker(sessions, pages, chunks, websites)
        self._website_lock = threading.Lock()

    # ── Entry points ────────────────────────────────────────────────────

    def execute_full_crawl(
        self,
        website_url: str,
        max_pages: int = 10,
        max_depth: int = 1,
        description: str | None = None,
        metadata: dict | None = None,
        *,
        progress: ProgressSink | None = None,
    ) -> PipelineResult:
        """Discover and ingest up to *max_pages* pages of a website."""
        started = time.monotonic()
        try:
            request = validate_request(
                FullCrawlRequest,
                website_url=website_url,
                max_pages=max_pages,
                max_depth=max_depth,
                description=description,
                session_metadata=metadata or {},
            )
        except ValidationFailure as exc:
            return self._failure(started, "Validation failed", str(exc))
        return self.run_full_crawl(request, progress=progress)

    def execute_add_page(
        self,
        website_url: str,
        page_url: str,
        title: str | None = None,
        description: str | None = None,
        priority: int | None = None,
        *,
        progress: ProgressSink | None = None,
    ) -> PipelineResult:
        """Ingest one page into a website in its own manual session."""
        started = time.monotonic()
        try:
            request = validate_request(
                AddPageRequest,
                website_url=website_url,
                page_url=page_url,
                title=title,
                description=description,
                priority=priority,
            )
        except ValidationFailure as exc:
            return self._failure(started, "Validation failed", str(exc))
        return self.run_add_page(request, progress=progress)

    def run_full_crawl(self, request: FullCrawlRequest, *, progress: ProgressSink | None = None) -> PipelineResult:
        """Run a full crawl from an already validated request."""
        started = time.monotonic()
        reporter = ProgressReporter(progress)
        reporter.emit(PipelineStage.DISCOVERY, f"Starting crawl of {request.website_url}", 0)

        try:
            website = self._resolve_website(request.website_url, request.description)
            session = self.tracker.open(
                website,
                {
                    **request.session_metadata,
                    "type": "full_crawl",
                    "maxPages": request.max_pages,
                    "maxDepth": request.max_depth,
                },
            )
        except PersistenceFailure as exc:
            logger.error("Could not start crawl of %s: %s", request.website_url, exc)
            return self._failure(started, "Run failed", str(exc))

        reporter.update(website_id=website.id, session_id=session.id)
        reporter.emit(PipelineStage.DISCOVERY, "Discovering pages", 5)

        try:
            candidates = self._discovery.discover(request.website_url, request.max_pages, request.max_depth)
            pages = self.tracker.register_pages(
                session,
                [
                    Page(
                        session_id=session.id,
                        website_id=website.id,
                        url=c.url,
                        priority=c.priority,
                        discovery_method=c.discovery_method,
                        depth=c.depth,
                    )
                    for c in candidates
                ],
            )
        except PipelineError as exc:
            logger.error("Crawl of %s failed: %s", request.website_url, exc)
            return self._abort(started, website, session, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error while discovering %s", request.website_url)
            return self._abort(started, website, session, f"Unexpected error: {exc}")

        reporter.update(pages_discovered=len(pages))
        reporter.emit(PipelineStage.DISCOVERY, f"Discovered {len(pages)} pages", DISCOVERY_DONE)
        return self._run_pages(started, website, session, pages, reporter)

    def run_add_page(self, request: AddPageRequest, *, progress: ProgressSink | None = None) -> PipelineResult:
        """Run a single-page ingestion from an already validated request."""
        started = time.monotonic()
        reporter = ProgressReporter(progress)
        reporter.emit(PipelineStage.DISCOVERY, f"Adding page {request.page_url}", 0)

        try:
            website = self._resolve_website(request.website_url, None)
            session = self.tracker.open(website, {"type": "manual", "pageUrl": request.page_url})
        except PersistenceFailure as exc:
            logger.error("Could not add page %s: %s", request.page_url, exc)
            return self._failure(started, "Run failed", str(exc))

        try:
            page = self._pages.create(
                Page(
                    session_id=session.id,
                    website_id=website.id,
                    url=urldefrag(request.page_url)[0],
                    title=request.title,
                    description=request.description,
                    priority=request.priority,
                    discovery_method=DiscoveryMethod.MANUAL,
                )
            )
            self.tracker.refresh(session.id)
        except PersistenceFailure as exc:
            logger.error("Could not add page %s: %s", request.page_url, exc)
            return self._abort(started, website, session, str(exc))

        reporter.update(website_id=website.id, session_id=session.id, pages_discovered=1)
        reporter.emit(PipelineStage.DISCOVERY, "Page registered", DISCOVERY_DONE)
        return self._run_pages(started, website, session, [page], reporter)

    # ── Page processing ─────────────────────────────────────────────────

    def _run_pages(
        self,
        started: float,
        website: Website,
        session: CrawlSession,
        pages: list[Page],
        reporter: ProgressReporter,
    ) -> PipelineResult:
        reporter.start_pages(len(pages))
        outcomes: list[_PageOutcome] = []
        try:
            if pages:
                workers = min(self.max_concurrency, len(pages))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="site-ingest") as pool:
                    futures = [pool.submit(self._process_page, session, page, reporter) for page in pages]
                    outcomes = [f.result() for f in futures]
            session = self.tracker.finalize(session)
        except Exception as exc:
            logger.exception("Run for %s aborted", website.domain)
            return self._abort(started, website, session, f"Unexpected error: {exc}")

        website = self._websites.get(website.id) or website

        completed = [o for o in outcomes if o.page.status == PageStatus.COMPLETED]
        summary = PipelineSummary(
            pages_discovered=len(pages),
            pages_processed=len(completed),
            chunks_created=sum(o.chunks_created for o in outcomes),
            embeddings_generated=sum(o.embeddings_generated for o in outcomes),
            processing_time_ms=_elapsed_ms(started),
            total_cost=round(sum(o.cost for o in outcomes), 8),
            average_quality=(
                round(sum(o.page.quality_score for o in completed) / len(completed), 1) if completed else 0.0
            ),
        )
        reporter.update(
            pages_processed=summary.pages_processed,
            chunks_created=summary.chunks_created,
            embeddings_generated=summary.embeddings_generated,
            total_cost=summary.total_cost,
            current_url=None,
        )
        message = (
            f"Processed {summary.pages_processed}/{summary.pages_discovered} pages, "
            f"{summary.chunks_created} chunks, ${summary.total_cost:.6f}"
        )
        reporter.emit(PipelineStage.COMPLETED, message, 100)
        logger.info("Run for %s finished: %s", website.domain, message)

        return PipelineResult(
            success=True,
            website=website,
            session=session,
            summary=summary,
            pages=[_page_summary(o) for o in outcomes],
            message=message,
        )

    def _process_page(self, session: CrawlSession, page: Page, reporter: ProgressReporter) -> _PageOutcome:
        """Run every stage for one page; failures stay on the page."""
        started = time.monotonic()
        outcome = _PageOutcome(page=page)
        try:
            self._advance(page, PageStatus.EXTRACTING)
            reporter.page_stage(page.id, PipelineStage.EXTRACTION, f"Extracting {page.url}", page.url)
            fetched = self._fetcher.fetch(page.url)
            extraction = self._extractor.extract(
                fetched.html, url=fetched.final_url, title=page.title, description=page.description,
            )
            page.title = extraction.title
            page.description = extraction.description
            page.content = extraction.clean_text
            page.quality_score = extraction.quality_score
            page.token_count = extraction.token_estimate
            page.crawled_at = fetched.fetched_at
            page.status = PageStatus.CHUNKING
            self._pages.bulk_upsert([page])

            reporter.page_stage(page.id, PipelineStage.CHUNKING, f"Chunking {page.url}", page.url)
            pieces = self._chunker.chunk(extraction.clean_text)
            page.token_count = sum(p.token_count for p in pieces)

            self._advance(page, PageStatus.EMBEDDING)
            reporter.page_stage(
                page.id, PipelineStage.EMBEDDING, f"Embedding {len(pieces)} chunks from {page.url}", page.url,
            )
            embedded = self._embedder.embed([p.text for p in pieces])
            outcome.cost = embedded.cost

            records = [
                Chunk(
                    id=chunk_id(page.website_id, page.url, piece.index),
                    page_id=page.id,
                    website_id=page.website_id,
                    url=page.url,
                    sequence_index=piece.index,
                    text=piece.text,
                    token_count=piece.token_count,
                    embedding=vector,
                    embedding_model=embedded.model,
                    quality_score=piece.quality_score,
                )
                for piece, vector in zip(pieces, embedded.vectors)
                if vector is not None
            ]
            outcome.chunks_created = self._chunks.bulk_insert(records)
            outcome.embeddings_generated = len(records)

            if not embedded.all_succeeded:
                raise EmbeddingFailure(
                    f"{len(embedded.failed_indices)} of {len(pieces)} chunks failed to embed: {embedded.errors[0]}"
                )
            page.status = PageStatus.COMPLETED
        except PipelineError as exc:
            logger.warning("Page %s failed: %s", page.url, exc)
            page.status = PageStatus.FAILED
            page.error_message = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", page.url)
            page.status = PageStatus.FAILED
            page.error_message = f"Unexpected error: {exc}"

        try:
            self.tracker.record_page(session, page)
        except PersistenceFailure as exc:
            logger.error("Could not record page %s: %s", page.url, exc)
            page.status = PageStatus.FAILED
            page.error_message = page.error_message or str(exc)

        outcome.elapsed_ms = _elapsed_ms(started)
        reporter.page_finished(
            page.id,
            chunks=outcome.chunks_created,
            embeddings=outcome.embeddings_generated,
            cost=outcome.cost,
            processed=page.status == PageStatus.COMPLETED,
            error=f"{page.url}: {page.error_message}" if page.status == PageStatus.FAILED else None,
        )
        return outcome

    # ── Helpers ─────────────────────────────────────────────────────────

    def _advance(self, page: Page, status: PageStatus) -> None:
        page.status = status
        self._pages.update_status(page.id, status)

    def _resolve_website(self, url: str, description: str | None) -> Website:
        domain = host_of(url)
        with self._website_lock:
            existing = self._websites.find_by_domain(domain)
            if existing is not None:
                return existing
            logger.info("Registering new website %s", domain)
            return self._websites.create(
                Website(
                    domain=domain,
                    base_url=base_url_of(url),
                    title=domain,
                    description=description or f"Website for {domain}",
                )
            )

    def _abort(self, started: float, website: Website, session: CrawlSession, message: str) -> PipelineResult:
        """Fail the session for a run-level error and build the failure result."""
        try:
            session = self.tracker.finalize(session, error=message)
        except PipelineError as exc:
            logger.error("Could not mark session %s failed: %s", session.id, exc)
        return self._failure(started, "Run failed", message, website=website, session=session)

    @staticmethod
    def _failure(
        started: float,
        error: str,
        message: str,
        *,
        website: Website | None = None,
        session: CrawlSession | None = None,
    ) -> PipelineResult:
        return PipelineResult(
            success=False,
            website=website,
            session=session,
            summary=PipelineSummary(processing_time_ms=_elapsed_ms(started)),
            error=error,
            message=message,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _page_summary(outcome: _PageOutcome) -> ProcessedPageSummary:
    page = outcome.page
    return ProcessedPageSummary(
        id=page.id,
        url=page.url,
        title=page.title,
        status=page.status,
        chunks_created=outcome.chunks_created,
        embeddings_generated=outcome.embeddings_generated,
        quality_score=page.quality_score,
        token_count=page.token_count,
        processing_time_ms=outcome.elapsed_ms,
        error=page.error_message,
    )
