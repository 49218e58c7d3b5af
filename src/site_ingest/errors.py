"""Exception hierarchy for the crawl-to-embedding pipeline.

Run-level errors (:class:`ValidationFailure`, :class:`RunFailure`) stop a
run before any page work happens.  The stage errors are page-local: the
orchestrator records them on the failing page and moves on.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class ValidationFailure(PipelineError):
    """Bad or missing input, rejected before the pipeline starts."""


class RunFailure(PipelineError):
    """The run cannot proceed at all (e.g. the website is unreachable)."""


class FetchFailure(PipelineError):
    """A page could not be retrieved.

    Attributes
    ----------
    url:
        The URL that was requested.
    reason:
        Human-readable description of the failure.
    status_code:
        HTTP status when the server answered, ``None`` when no response
        was received at all.
    transient:
        Whether the failure class is worth retrying.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        *,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(reason)
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.transient = transient

    @property
    def unreachable(self) -> bool:
        """True when the host never produced an HTTP response."""
        return self.status_code is None


class ExtractionFailure(PipelineError):
    """Raw content could not be parsed into text."""


class ChunkingFailure(PipelineError):
    """Clean text was degenerate and produced no chunks."""


class EmbeddingFailure(PipelineError):
    """The embedding provider failed (after retries, when ``transient``)."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class EmbeddingDimensionError(EmbeddingFailure):
    """The provider returned vectors of the wrong length.  Never retried."""


class PersistenceFailure(PipelineError):
    """A repository write failed."""
