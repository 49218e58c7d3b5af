"""Unit tests for progress reporting and the streaming channel."""

from __future__ import annotations

import threading

import pytest

from site_ingest.pipeline.models import PipelineStage, ProgressEvent
from site_ingest.pipeline.progress import ProgressChannel, ProgressReporter


def _event(progress: float = 10.0) -> ProgressEvent:
    return ProgressEvent(stage=PipelineStage.DISCOVERY, message="m", progress=progress)


class TestProgressReporter:
    def test_stage_progression(self) -> None:
        events: list[ProgressEvent] = []
        reporter = ProgressReporter(events.append)

        reporter.emit(PipelineStage.DISCOVERY, "Discovering", 0)
        reporter.emit(PipelineStage.DISCOVERY, "Found 2 pages", 20)
        reporter.start_pages(2)
        reporter.page_stage("a", PipelineStage.EXTRACTION, "Extracting a", "https://e.com/a")
        reporter.page_stage("a", PipelineStage.CHUNKING, "Chunking a", "https://e.com/a")
        reporter.page_stage("a", PipelineStage.EMBEDDING, "Embedding a", "https://e.com/a")
        reporter.page_finished("a", chunks=3, embeddings=3, cost=0.01, processed=True)
        reporter.emit(PipelineStage.EXTRACTION, "Half way")
        reporter.emit(PipelineStage.COMPLETED, "Done", 100)

        values = [e.progress for e in events]
        assert values == sorted(values)
        assert values[0] == 0 and values[-1] == 100
        assert values[3] == pytest.approx(32.5)
        assert values[-2] == pytest.approx(57.5)
        assert events[-1].details.chunks_created == 3
        assert events[-1].details.pages_processed == 1
        assert events[-1].details.current_url == "https://e.com/a"

    def test_never_decreases(self) -> None:
        events: list[ProgressEvent] = []
        reporter = ProgressReporter(events.append)
        reporter.emit(PipelineStage.DISCOVERY, "high", 50)
        reporter.emit(PipelineStage.DISCOVERY, "lower", 30)
        assert [e.progress for e in events] == [50, 50]

    def test_failed_page_accounts_all_units(self) -> None:
        events: list[ProgressEvent] = []
        reporter = ProgressReporter(events.append)
        reporter.start_pages(1)
        reporter.page_stage("a", PipelineStage.EXTRACTION, "Extracting", "u")
        reporter.page_finished("a", chunks=0, embeddings=0, cost=0.0, processed=False, error="HTTP 404")
        reporter.emit(PipelineStage.EMBEDDING, "after")

        assert events[-1].progress == 95
        assert events[-1].details.errors == ["HTTP 404"]
        assert events[-1].details.pages_processed == 0

    def test_sink_errors_ignored(self) -> None:
        def sink(event: ProgressEvent) -> None:
            raise RuntimeError("consumer gone")

        reporter = ProgressReporter(sink)
        reporter.emit(PipelineStage.DISCOVERY, "still fine", 5)

    def test_concurrent_emitters_stay_ordered(self) -> None:
        events: list[ProgressEvent] = []
        reporter = ProgressReporter(events.append)
        reporter.start_pages(20)

        def work(page: str) -> None:
            for stage in (PipelineStage.EXTRACTION, PipelineStage.CHUNKING, PipelineStage.EMBEDDING):
                reporter.page_stage(page, stage, stage.value, page)
            reporter.page_finished(page, chunks=1, embeddings=1, cost=0.0, processed=True)

        threads = [threading.Thread(target=work, args=(f"p{i}",)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        values = [e.progress for e in events]
        assert values == sorted(values)
        assert reporter.details.pages_processed == 20


class TestProgressChannel:
    def test_iterates_until_terminal(self) -> None:
        channel = ProgressChannel(maxsize=10, poll_interval=0.01)
        channel.emit(_event(5))
        channel.emit(_event(10))
        channel.finish("result", {"success": True})
        channel.emit(_event(99))

        items = list(channel)
        assert [kind for kind, _ in items] == ["progress", "progress", "result"]

    def test_full_buffer_drops_progress_but_keeps_terminal(self) -> None:
        channel = ProgressChannel(maxsize=2, poll_interval=0.01)
        for value in (1, 2, 3, 4):
            channel.emit(_event(value))
        channel.finish("error", "boom")

        items = list(channel)
        assert items[-1] == ("error", "boom")
        assert len(items) == 2
        assert channel.dropped == 3

    def test_closed_channel_discards(self) -> None:
        channel = ProgressChannel(maxsize=2, poll_interval=0.01)
        channel.close()
        channel.emit(_event())
        channel.finish("result", {})
        assert list(channel) == []

    def test_unknown_terminal_type(self) -> None:
        with pytest.raises(ValueError):
            ProgressChannel().finish("progress", None)

    def test_consumer_receives_from_producer_thread(self) -> None:
        channel = ProgressChannel(maxsize=4, poll_interval=0.01)

        def produce() -> None:
            for value in range(3):
                channel.emit(_event(value))
            channel.finish("result", "ok")

        thread = threading.Thread(target=produce)
        thread.start()
        items = list(channel)
        thread.join()
        assert items[-1] == ("result", "ok")
