"""Abstract repository interfaces consumed by the pipeline.

Adding a new backend (Postgres, SQLite, a hosted vector DB …) only
requires subclassing the four repositories below.  Implementations must
be safe to call from several worker threads at once and should raise
:class:`~site_ingest.errors.PersistenceFailure` when a write fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from site_ingest.storage.models import Chunk, CrawlSession, Page, PageStatus, SessionStatus, Website


class WebsiteRepository(ABC):
    """Storage for :class:`Website` records."""

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def find_by_domain(self, domain: str) -> Website | None:
        """Return the website registered for *domain*, if any."""
        ...

    @abstractmethod
    def get(self, website_id: str) -> Website | None:
        ...

    @abstractmethod
    def create(self, website: Website) -> Website:
        """Persist a new website.  Domains are unique."""
        ...

    @abstractmethod
    def update_aggregates(
        self,
        website_id: str,
        *,
        total_pages: int,
        last_crawled_at: datetime | None = None,
    ) -> Website:
        """Overwrite the derived counters of a website."""
        ...


class CrawlSessionRepository(ABC):
    """Storage for :class:`CrawlSession` records."""

    @abstractmethod
    def create(self, session: CrawlSession) -> CrawlSession:
        ...

    @abstractmethod
    def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        error_message: str | None = None,
    ) -> CrawlSession:
        """Persist a status transition (timestamps only overwrite when given)."""
        ...

    @abstractmethod
    def update_aggregates(
        self,
        session_id: str,
        *,
        pages_discovered: int,
        pages_completed: int,
        chunks_created: int,
    ) -> CrawlSession:
        ...

    @abstractmethod
    def get(self, session_id: str) -> CrawlSession | None:
        ...

    @abstractmethod
    def list_by_website(self, website_id: str) -> list[CrawlSession]:
        ...


class PageRepository(ABC):
    """Storage for :class:`Page` records, unique on the session and normalised URL."""

    @abstractmethod
    def create(self, page: Page) -> Page:
        ...

    @abstractmethod
    def update_status(
        self,
        page_id: str,
        status: PageStatus,
        *,
        error_message: str | None = None,
    ) -> Page:
        ...

    @abstractmethod
    def bulk_upsert(self, pages: Iterable[Page]) -> list[Page]:
        """Insert or replace pages, matching on the session and normalised URL."""
        ...

    @abstractmethod
    def list_by_session(self, session_id: str) -> list[Page]:
        ...

    @abstractmethod
    def count_by_session(self, session_id: str, status: PageStatus | None = None) -> int:
        ...

    @abstractmethod
    def count_completed_urls(self, website_id: str) -> int:
        """Distinct URLs with at least one completed page across all sessions."""
        ...


class ChunkRepository(ABC):
    """Storage for embedded :class:`Chunk` records."""

    @abstractmethod
    def bulk_insert(self, chunks: list[Chunk]) -> int:
        """Store *chunks* with their vectors and return how many were written.

        Any chunks previously stored for the same ``(website_id, url)``
        pairs are replaced, so re-ingesting a page never duplicates
        content.
        """
        ...

    @abstractmethod
    def count_by_pages(self, page_ids: Iterable[str]) -> int:
        ...

    @abstractmethod
    def list_by_page(self, page_id: str) -> list[Chunk]:
        ...
