"""Progress reporting for a single run and a bounded channel for streaming it."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from typing import Any

from site_ingest.pipeline.models import PipelineStage, ProgressDetails, ProgressEvent

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]

DISCOVERY_DONE = 20.0
WORK_DONE = 95.0
STAGES_PER_PAGE = 3

# Units a page has completed on entering each stage.
_STAGE_INDEX = {
    PipelineStage.EXTRACTION: 0,
    PipelineStage.CHUNKING: 1,
    PipelineStage.EMBEDDING: 2,
}


class ProgressReporter:
    """Build monotonic :class:`ProgressEvent` values for one run.

    Discovery covers 0–20 %, page work is spread over 20–95 % by completed
    stage units, and completion is 100 %.  Events are handed to the sink
    under a lock, so the sink sees them in non-decreasing order even when
    several worker threads report at once.  A sink that raises is logged
    and otherwise ignored.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self._last = 0.0
        self._total_units = 0
        self._done_units = 0
        self._page_units: dict[str, int] = {}
        self.details = ProgressDetails()

    def update(self, **fields: Any) -> None:
        with self._lock:
            self.details = self.details.model_copy(update=fields)

    def emit(self, stage: PipelineStage, message: str, progress: float | None = None) -> None:
        with self._lock:
            self._emit_locked(stage, message, progress)

    def start_pages(self, page_count: int) -> None:
        with self._lock:
            self._total_units = page_count * STAGES_PER_PAGE

    def page_stage(self, page_id: str, stage: PipelineStage, message: str, url: str) -> None:
        """A page entered *stage*; the previous stage of that page is done."""
        with self._lock:
            completed = _STAGE_INDEX.get(stage, 0)
            previous = self._page_units.get(page_id, 0)
            if completed > previous:
                self._done_units += completed - previous
                self._page_units[page_id] = completed
            self.details = self.details.model_copy(update={"current_url": url})
            self._emit_locked(stage, message, None)

    def page_finished(
        self,
        page_id: str,
        *,
        chunks: int,
        embeddings: int,
        cost: float,
        processed: bool,
        error: str | None = None,
    ) -> None:
        """Account every remaining unit of a page and fold in its counts."""
        with self._lock:
            self._done_units += STAGES_PER_PAGE - self._page_units.get(page_id, 0)
            self._page_units[page_id] = STAGES_PER_PAGE
            d = self.details
            self.details = d.model_copy(
                update={
                    "pages_processed": d.pages_processed + (1 if processed else 0),
                    "chunks_created": d.chunks_created + chunks,
                    "embeddings_generated": d.embeddings_generated + embeddings,
                    "total_cost": d.total_cost + cost,
                    "errors": d.errors + ([error] if error else []),
                }
            )

    # -- internals ------------------------------------------------------------

    def _work_progress(self) -> float:
        if not self._total_units:
            return WORK_DONE
        fraction = min(1.0, self._done_units / self._total_units)
        return DISCOVERY_DONE + (WORK_DONE - DISCOVERY_DONE) * fraction

    def _emit_locked(self, stage: PipelineStage, message: str, progress: float | None) -> None:
        value = self._work_progress() if progress is None else progress
        value = max(self._last, min(100.0, value))
        self._last = value
        if self._sink is None:
            return
        event = ProgressEvent(stage=stage, message=message, progress=round(value, 1), details=self.details)
        try:
            self._sink(event)
        except Exception:
            logger.warning("Progress sink raised; continuing without this event", exc_info=True)


class ProgressChannel:
    """Bounded, ordered channel between a running pipeline and one consumer.

    Producers never block on progress: when the buffer is full the event
    is dropped.  The terminal item (``result`` or ``error``) always gets in,
    evicting the oldest buffered event if necessary.  After :meth:`close`
    (e.g. the client disconnected) everything is silently discarded.

    Items are ``(event_type, payload)`` tuples.
    """

    TERMINAL = ("result", "error")

    def __init__(self, maxsize: int = 256, *, poll_interval: float = 0.5) -> None:
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._poll_interval = poll_interval
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: ProgressEvent) -> None:
        """Progress sink: non-blocking, best effort."""
        if self.closed:
            return
        try:
            self._queue.put_nowait(("progress", event))
        except queue.Full:
            self.dropped += 1
            logger.debug("Progress buffer full; dropped event at %.1f%%", event.progress)

    def finish(self, event_type: str, payload: Any) -> None:
        """Enqueue the terminal item."""
        if event_type not in self.TERMINAL:
            raise ValueError(f"Unknown terminal event type: {event_type!r}")
        while not self.closed:
            try:
                self._queue.put_nowait((event_type, payload))
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def close(self) -> None:
        self._closed.set()

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        while not self.closed:
            try:
                item = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            yield item
            if item[0] in self.TERMINAL:
                return
