"""Per-run bookkeeping: session lifecycle and derived counters."""

from __future__ import annotations

import logging
import threading
from typing import Any

from site_ingest.errors import PersistenceFailure
from site_ingest.storage.base import (
    ChunkRepository,
    CrawlSessionRepository,
    PageRepository,
    WebsiteRepository,
)
from site_ingest.storage.models import CrawlSession, Page, PageStatus, SessionStatus, Website, utcnow

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {SessionStatus.RUNNING, SessionStatus.FAILED},
    SessionStatus.RUNNING: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
}


class SessionTracker:
    """Own the state of crawl sessions for the orchestrator.

    Counters are never incremented: every update recounts the session's
    pages and chunks from the repositories, so a retried or partially
    failed write cannot leave them out of step with the stored rows.
    """

    def __init__(
        self,
        sessions: CrawlSessionRepository,
        pages: PageRepository,
        chunks: ChunkRepository,
        websites: WebsiteRepository,
    ) -> None:
        self._sessions = sessions
        self._pages = pages
        self._chunks = chunks
        self._websites = websites
        self._lock = threading.Lock()
        # In-flight sessions only; entries are dropped once terminal.
        self._status: dict[str, SessionStatus] = {}

    def open(self, website: Website, metadata: dict[str, Any] | None = None) -> CrawlSession:
        """Create a session for *website* and move it to ``running``."""
        session = self._sessions.create(CrawlSession(website_id=website.id, metadata=dict(metadata or {})))
        with self._lock:
            self._status[session.id] = session.status
        session = self._transition(session.id, SessionStatus.RUNNING, started_at=utcnow())
        logger.info("Opened session %s for %s (%s)", session.id, website.domain, session.metadata.get("type"))
        return session

    def register_pages(self, session: CrawlSession, pages: list[Page]) -> list[Page]:
        stored = self._pages.bulk_upsert(pages) if pages else []
        self.refresh(session.id)
        return stored

    def record_page(self, session: CrawlSession, page: Page) -> CrawlSession:
        """Persist the final state of *page* and recount the session.

        The recount is best effort here; :meth:`finalize` recounts again.
        """
        self._pages.bulk_upsert([page])
        try:
            return self.refresh(session.id)
        except PersistenceFailure as exc:
            logger.warning("Could not recount session %s: %s", session.id, exc)
            return session

    def refresh(self, session_id: str) -> CrawlSession:
        page_ids = [p.id for p in self._pages.list_by_session(session_id)]
        return self._sessions.update_aggregates(
            session_id,
            pages_discovered=self._pages.count_by_session(session_id),
            pages_completed=self._pages.count_by_session(session_id, PageStatus.COMPLETED),
            chunks_created=self._chunks.count_by_pages(page_ids),
        )

    def finalize(self, session: CrawlSession, *, error: str | None = None) -> CrawlSession:
        """Mark the session terminal and refresh the website aggregates.

        ``completed`` when the run reached the end of its page list,
        whatever happened to individual pages; ``failed`` only when a
        run-level *error* is given.  A recount that cannot be read is
        logged and the transition still happens, so the session always
        ends terminal.
        """
        stored = self._sessions.get(session.id)
        if stored is not None and stored.status.terminal:
            logger.warning("Session %s already %s; finalize ignored", session.id, stored.status.value)
            return stored

        try:
            self.refresh(session.id)
        except PersistenceFailure as exc:
            logger.error("Could not recount session %s: %s", session.id, exc)
        status = SessionStatus.FAILED if error else SessionStatus.COMPLETED
        finished = utcnow()
        session = self._transition(session.id, status, completed_at=finished, error_message=error)
        with self._lock:
            self._status.pop(session.id, None)
        try:
            self._websites.update_aggregates(
                session.website_id,
                total_pages=self._pages.count_completed_urls(session.website_id),
                last_crawled_at=finished,
            )
        except PersistenceFailure as exc:
            logger.error("Could not update website %s aggregates: %s", session.website_id, exc)
        logger.info(
            "Session %s %s: %d/%d pages, %d chunks",
            session.id, status.value, session.pages_completed, session.pages_discovered, session.chunks_created,
        )
        return session

    def _transition(self, session_id: str, status: SessionStatus, **fields: Any) -> CrawlSession:
        with self._lock:
            current = self._status.get(session_id)
            if current is None:
                row = self._sessions.get(session_id)
                current = row.status if row is not None else SessionStatus.PENDING
            if status not in _ALLOWED_TRANSITIONS[current]:
                raise ValueError(f"Illegal session transition {current.value} -> {status.value}")
            self._status[session_id] = status
        return self._sessions.update_status(session_id, status, **fields)
