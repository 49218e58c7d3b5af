"""
Pipeline — orchestration of discovery and per-page ingestion.

Public surface
--------------
- :class:`CrawlPipeline` — the orchestrator (full crawl / add page).
- :func:`build_pipeline` — wires a pipeline from :class:`~site_ingest.config.Settings`.
- :class:`SessionTracker` — session lifecycle and derived counters.
- :class:`ProgressReporter`, :class:`ProgressChannel` — progress emission and streaming.
- Request / result / progress models.
"""

from site_ingest.pipeline.factory import build_pipeline
from site_ingest.pipeline.models import (
    AddPageRequest,
    FullCrawlRequest,
    PipelineResult,
    PipelineStage,
    PipelineSummary,
    ProcessedPageSummary,
    ProgressEvent,
)
from site_ingest.pipeline.orchestrator import CrawlPipeline
from site_ingest.pipeline.progress import ProgressChannel, ProgressReporter
from site_ingest.pipeline.session import SessionTracker

__all__ = [
    "AddPageRequest",
    "CrawlPipeline",
    "FullCrawlRequest",
    "PipelineResult",
    "PipelineStage",
    "PipelineSummary",
    "ProcessedPageSummary",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressReporter",
    "SessionTracker",
    "build_pipeline",
]
