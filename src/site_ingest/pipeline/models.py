"""Request, progress and result schemas shared by the orchestrator and transports."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from site_ingest.crawling.urls import host_of, is_well_formed
from site_ingest.errors import ValidationFailure
from site_ingest.storage.models import CamelModel, CrawlSession, PageStatus, Website, utcnow

DEFAULT_PRIORITY = 80

RequestT = TypeVar("RequestT", bound=BaseModel)


def _check_url(value: str, field_name: str) -> str:
    value = (value or "").strip()
    if not is_well_formed(value):
        raise ValueError(f"{field_name} must be a well-formed http(s) URL")
    return value


def describe_validation_error(exc: ValidationError) -> str:
    """Flatten a pydantic error into one human-readable line."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "__root__")
        message = error.get("msg", "").removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def validate_request(model: type[RequestT], **fields: Any) -> RequestT:
    """Build a request model, raising :class:`ValidationFailure` on bad input."""
    try:
        return model(**fields)
    except ValidationError as exc:
        raise ValidationFailure(describe_validation_error(exc)) from exc


# ── Requests ────────────────────────────────────────────────────────────


class FullCrawlRequest(CamelModel):
    """Options for a full-site crawl."""

    website_url: str
    max_pages: int = Field(default=10, ge=1, le=100)
    max_depth: int = Field(default=1, ge=1, le=5)
    description: str | None = None
    session_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("website_url")
    @classmethod
    def _website_url(cls, value: str) -> str:
        return _check_url(value, "websiteUrl")


class AddPageRequest(CamelModel):
    """Options for adding a single page to a website."""

    website_url: str
    page_url: str
    title: str | None = None
    description: str | None = None
    priority: int = Field(default=DEFAULT_PRIORITY, ge=0, le=100)

    @field_validator("website_url")
    @classmethod
    def _website_url(cls, value: str) -> str:
        return _check_url(value, "websiteUrl")

    @field_validator("page_url")
    @classmethod
    def _page_url(cls, value: str) -> str:
        return _check_url(value, "pageUrl")

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        return DEFAULT_PRIORITY if value is None else value

    @model_validator(mode="after")
    def _same_host(self) -> AddPageRequest:
        page_host, site_host = host_of(self.page_url), host_of(self.website_url)
        if page_host != site_host:
            raise ValueError(f"Page URL domain ({page_host}) doesn't match website domain ({site_host})")
        return self


# ── Progress ────────────────────────────────────────────────────────────


class PipelineStage(str, Enum):
    DISCOVERY = "discovery"
    EXTRACTION = "extraction"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"


class ProgressDetails(CamelModel):
    website_id: str | None = None
    session_id: str | None = None
    pages_discovered: int = 0
    pages_processed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    total_cost: float = 0.0
    current_url: str | None = None
    errors: list[str] = Field(default_factory=list)


class ProgressEvent(CamelModel):
    """One ordered progress notification; ``progress`` never decreases within a run."""

    stage: PipelineStage
    message: str
    progress: float = Field(ge=0, le=100)
    details: ProgressDetails = Field(default_factory=ProgressDetails)
    timestamp: datetime = Field(default_factory=utcnow)


# ── Results ─────────────────────────────────────────────────────────────


class ProcessedPageSummary(CamelModel):
    id: str
    url: str
    title: str | None = None
    status: PageStatus
    chunks_created: int = 0
    embeddings_generated: int = 0
    quality_score: float = 0.0
    token_count: int = 0
    processing_time_ms: int = 0
    error: str | None = None


class PipelineSummary(CamelModel):
    pages_discovered: int = 0
    pages_processed: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    processing_time_ms: int = 0
    total_cost: float = 0.0
    average_quality: float = 0.0


class PipelineResult(CamelModel):
    """Outcome of one run.  ``success`` is false only for run-level failures."""

    success: bool
    website: Website | None = None
    session: CrawlSession | None = None
    summary: PipelineSummary = Field(default_factory=PipelineSummary)
    pages: list[ProcessedPageSummary] = Field(default_factory=list)
    error: str | None = None
    message: str = ""
