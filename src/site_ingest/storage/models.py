"""Persistent entities: websites, crawl sessions, pages and chunks.

Ownership runs Website → CrawlSession → Page → Chunk.  Aggregate
counters on websites and sessions are always recomputed from the child
records, never incremented in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class PageStatus(str, Enum):
    DISCOVERED = "discovered"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"


class DiscoveryMethod(str, Enum):
    SITEMAP = "sitemap"
    CRAWL = "crawl"
    MANUAL = "manual"


class Website(CamelModel):
    """Identity for a crawled origin."""

    id: str = Field(default_factory=_new_id)
    domain: str
    base_url: str
    title: str | None = None
    description: str | None = None
    total_pages: int = 0
    last_crawled_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class CrawlSession(CamelModel):
    """One pipeline run against a website.

    Attributes
    ----------
    status:
        Moves forward only: ``pending → running → completed | failed``.
    pages_discovered, pages_completed, chunks_created:
        Derived from child records by the session tracker.
    metadata:
        Free-form run information (kind, limits, caller metadata).
    """

    id: str = Field(default_factory=_new_id)
    website_id: str
    status: SessionStatus = SessionStatus.PENDING
    pages_discovered: int = 0
    pages_completed: int = 0
    chunks_created: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Page(CamelModel):
    """One URL within a session."""

    id: str = Field(default_factory=_new_id)
    session_id: str
    website_id: str
    url: str
    title: str | None = None
    description: str | None = None
    priority: int = 80
    discovery_method: DiscoveryMethod = DiscoveryMethod.CRAWL
    depth: int = 0
    status: PageStatus = PageStatus.DISCOVERED
    content: str | None = None
    quality_score: float = 0.0
    token_count: int = 0
    error_message: str | None = None
    crawled_at: datetime | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        if value is None:
            return 80
        return int(max(0, min(100, round(float(value)))))

    @field_validator("quality_score")
    @classmethod
    def _clamp_quality(cls, value: float) -> float:
        return max(0.0, min(100.0, value))


class Chunk(CamelModel):
    """One embeddable unit of a page's content."""

    id: str
    page_id: str
    website_id: str
    url: str
    sequence_index: int = Field(ge=0)
    text: str
    token_count: int
    embedding: list[float] | None = None
    embedding_model: str | None = None
    quality_score: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
