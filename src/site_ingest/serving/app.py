"""FastAPI application exposing the ingestion pipeline as a REST API."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from site_ingest.config import Settings, settings
from site_ingest.pipeline.factory import build_pipeline
from site_ingest.pipeline.models import AddPageRequest, FullCrawlRequest, PipelineResult
from site_ingest.pipeline.orchestrator import CrawlPipeline
from site_ingest.pipeline.progress import ProgressChannel

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ── Dependencies ──────────────────────────────────────────────────────
def get_pipeline(request: Request) -> CrawlPipeline:
    return request.app.state.pipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def sse_frame(event_type: str, payload: BaseModel | dict[str, Any] | None = None) -> str:
    """Encode one Server-Sent Events ``data:`` frame."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True)
    return f"data: {json.dumps({'type': event_type, 'data': payload or {}})}\n\n"


# ── Routes ────────────────────────────────────────────────────────────
@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@router.post("/full-crawl", response_model=PipelineResult)
def full_crawl(body: FullCrawlRequest, pipeline: CrawlPipeline = Depends(get_pipeline)) -> PipelineResult:
    """Crawl a website and return the run summary."""
    return pipeline.run_full_crawl(body)


@router.post("/add-page", response_model=PipelineResult)
def add_page(body: AddPageRequest, pipeline: CrawlPipeline = Depends(get_pipeline)) -> PipelineResult:
    """Ingest a single page of a website."""
    return pipeline.run_add_page(body)


@router.post("/full-crawl-stream")
def full_crawl_stream(
    body: FullCrawlRequest,
    pipeline: CrawlPipeline = Depends(get_pipeline),
    cfg: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Crawl a website, streaming progress as Server-Sent Events.

    The run happens on a worker thread.  If the client goes away the
    channel is closed and further events are discarded; the run itself
    continues to completion.
    """
    channel = ProgressChannel(maxsize=cfg.progress_buffer_size)

    def run() -> None:
        try:
            result = pipeline.run_full_crawl(body, progress=channel.emit)
        except Exception as exc:
            logger.exception("Streaming crawl of %s crashed", body.website_url)
            channel.finish("error", {"success": False, "error": "Internal error", "message": str(exc)})
            return
        channel.finish("result" if result.success else "error", result)

    def events() -> Iterator[str]:
        try:
            yield sse_frame("connected", {"websiteUrl": body.website_url})
            for event_type, payload in channel:
                yield sse_frame(event_type, payload)
        finally:
            channel.close()
            if channel.dropped:
                logger.info("Dropped %d progress events for %s", channel.dropped, body.website_url)

    threading.Thread(target=run, name="site-ingest-stream", daemon=True).start()
    return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)


# ── Error handling ────────────────────────────────────────────────────
async def validation_failed(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reject malformed requests with a 400 and the pipeline's result shape."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = str(error.get("msg", "")).removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "message": "; ".join(parts)},
    )


# ── Application factory ───────────────────────────────────────────────
def create_app(pipeline: CrawlPipeline | None = None, app_settings: Settings | None = None) -> FastAPI:
    """Build the API.  Without an explicit *pipeline* one is wired at startup."""
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.pipeline is None:
            logging.basicConfig(level=cfg.log_level)
            app.state.pipeline = build_pipeline(cfg)
        yield

    app = FastAPI(
        title="Site Ingest API",
        version="0.1.0",
        description="Crawl websites into embedded, retrieval-ready chunks.",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.settings = cfg
    app.add_exception_handler(RequestValidationError, validation_failed)
    app.include_router(router)
    return app


app = create_app()
