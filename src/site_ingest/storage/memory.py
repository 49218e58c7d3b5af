"""Thread-safe in-memory repositories.

Used as the default backend for local runs and as the test double for
the pipeline.  Records are copied on the way in and out so callers never
share mutable state with the store.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

from site_ingest.crawling.urls import normalize_url
from site_ingest.errors import PersistenceFailure
from site_ingest.storage.base import (
    ChunkRepository,
    CrawlSessionRepository,
    PageRepository,
    WebsiteRepository,
)
from site_ingest.storage.models import (
    Chunk,
    CrawlSession,
    Page,
    PageStatus,
    SessionStatus,
    Website,
)


class InMemoryWebsiteRepository(WebsiteRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Website] = {}

    def find_by_domain(self, domain: str) -> Website | None:
        with self._lock:
            for row in self._rows.values():
                if row.domain == domain:
                    return row.model_copy(deep=True)
        return None

    def get(self, website_id: str) -> Website | None:
        with self._lock:
            row = self._rows.get(website_id)
            return row.model_copy(deep=True) if row else None

    def create(self, website: Website) -> Website:
        with self._lock:
            if any(row.domain == website.domain for row in self._rows.values()):
                raise PersistenceFailure(f"Website for domain {website.domain!r} already exists")
            self._rows[website.id] = website.model_copy(deep=True)
        return website

    def update_aggregates(
        self,
        website_id: str,
        *,
        total_pages: int,
        last_crawled_at: datetime | None = None,
    ) -> Website:
        with self._lock:
            row = _require(self._rows, website_id, "website")
            row.total_pages = total_pages
            if last_crawled_at is not None:
                row.last_crawled_at = last_crawled_at
            return row.model_copy(deep=True)


class InMemoryCrawlSessionRepository(CrawlSessionRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, CrawlSession] = {}

    def create(self, session: CrawlSession) -> CrawlSession:
        with self._lock:
            self._rows[session.id] = session.model_copy(deep=True)
        return session

    def get(self, session_id: str) -> CrawlSession | None:
        with self._lock:
            row = self._rows.get(session_id)
            return row.model_copy(deep=True) if row else None

    def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        error_message: str | None = None,
    ) -> CrawlSession:
        with self._lock:
            row = _require(self._rows, session_id, "session")
            row.status = status
            if started_at is not None:
                row.started_at = started_at
            if completed_at is not None:
                row.completed_at = completed_at
            if error_message is not None:
                row.error_message = error_message
            return row.model_copy(deep=True)

    def update_aggregates(
        self,
        session_id: str,
        *,
        pages_discovered: int,
        pages_completed: int,
        chunks_created: int,
    ) -> CrawlSession:
        with self._lock:
            row = _require(self._rows, session_id, "session")
            row.pages_discovered = pages_discovered
            row.pages_completed = pages_completed
            row.chunks_created = chunks_created
            return row.model_copy(deep=True)

    def list_by_website(self, website_id: str) -> list[CrawlSession]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rows.values() if r.website_id == website_id]


class InMemoryPageRepository(PageRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Page] = {}

    def create(self, page: Page) -> Page:
        with self._lock:
            if self._find(page.session_id, page.url) is not None:
                raise PersistenceFailure(f"Page {page.url!r} already exists in session {page.session_id}")
            self._rows[page.id] = page.model_copy(deep=True)
        return page

    def update_status(
        self,
        page_id: str,
        status: PageStatus,
        *,
        error_message: str | None = None,
    ) -> Page:
        with self._lock:
            row = _require(self._rows, page_id, "page")
            row.status = status
            if error_message is not None:
                row.error_message = error_message
            return row.model_copy(deep=True)

    def bulk_upsert(self, pages: Iterable[Page]) -> list[Page]:
        stored: list[Page] = []
        with self._lock:
            for page in pages:
                existing = self._find(page.session_id, page.url)
                row = page.model_copy(deep=True)
                if existing is not None and existing.id != page.id:
                    # Keep the identity of the record already stored for this URL.
                    row.id = existing.id
                    del self._rows[existing.id]
                self._rows[row.id] = row
                stored.append(row.model_copy(deep=True))
        return stored

    def list_by_session(self, session_id: str) -> list[Page]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._rows.values() if r.session_id == session_id]

    def count_by_session(self, session_id: str, status: PageStatus | None = None) -> int:
        with self._lock:
            return sum(
                1 for r in self._rows.values()
                if r.session_id == session_id and (status is None or r.status == status)
            )

    def count_completed_urls(self, website_id: str) -> int:
        with self._lock:
            return len(
                {normalize_url(r.url) for r in self._rows.values()
                 if r.website_id == website_id and r.status == PageStatus.COMPLETED}
            )

    def _find(self, session_id: str, url: str) -> Page | None:
        key = normalize_url(url)
        for row in self._rows.values():
            if row.session_id == session_id and normalize_url(row.url) == key:
                return row
        return None


class InMemoryChunkRepository(ChunkRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Chunk] = {}

    def bulk_insert(self, chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        replaced = {(c.website_id, normalize_url(c.url)) for c in chunks}
        with self._lock:
            stale = [cid for cid, row in self._rows.items() if (row.website_id, normalize_url(row.url)) in replaced]
            for chunk_id in stale:
                del self._rows[chunk_id]
            for chunk in chunks:
                self._rows[chunk.id] = chunk.model_copy(deep=True)
        return len(chunks)

    def count_by_pages(self, page_ids: Iterable[str]) -> int:
        wanted = set(page_ids)
        with self._lock:
            return sum(1 for row in self._rows.values() if row.page_id in wanted)

    def list_by_page(self, page_id: str) -> list[Chunk]:
        with self._lock:
            rows = [r.model_copy(deep=True) for r in self._rows.values() if r.page_id == page_id]
        return sorted(rows, key=lambda r: r.sequence_index)


def _require(rows: dict, key: str, kind: str):  # noqa: ANN202
    try:
        return rows[key]
    except KeyError:
        raise PersistenceFailure(f"Unknown {kind} id {key!r}") from None
