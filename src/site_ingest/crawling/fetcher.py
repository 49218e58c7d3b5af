"""HTTP page retrieval with bounded timeouts, redirects and retries."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests

from site_ingest.errors import FetchFailure

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "application/xml", "text/xml")
SITEMAP_CONTENT_TYPES = ("application/xml", "text/xml", "text/plain", "application/x-gzip", "text/html")

_DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class FetchResult:
    """Raw content of one successfully fetched URL."""

    url: str
    final_url: str
    status_code: int
    html: str
    content_type: str = ""
    content_length: int = 0
    elapsed_ms: int = 0
    redirect_count: int = 0
    encoding: str | None = None
    last_modified: str | None = None
    etag: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Fetcher:
    """Retrieve pages over HTTP.

    Transient failures (connection errors, timeouts, 5xx and 429) are
    retried with exponential backoff; everything else fails immediately
    with a :class:`FetchFailure`.

    Parameters
    ----------
    timeout:
        Per-request timeout in seconds.
    max_retries:
        Retries after the first attempt for transient failures.
    max_redirects:
        Redirect hop ceiling.
    backoff_seconds:
        Base wait; attempt *n* waits ``backoff_seconds * 2 ** (n - 1)``.
    user_agent:
        Value for the ``User-Agent`` header.
    session:
        Optional pre-built ``requests.Session`` (shared connection pool).
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        max_redirects: int = 5,
        backoff_seconds: float = 0.5,
        user_agent: str = "site-ingest/1.0",
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.headers = {**_DEFAULT_HEADERS, "User-Agent": user_agent}
        self._session = session or requests.Session()
        self._session.max_redirects = max_redirects

    def fetch(
        self,
        url: str,
        *,
        accept: tuple[str, ...] = HTML_CONTENT_TYPES,
        timeout: float | None = None,
    ) -> FetchResult:
        """Download *url* and return its decoded body.

        Raises
        ------
        FetchFailure
            When the URL is malformed, the server answers with a
            permanent error, the content type is not in *accept*, or
            transient failures outlast the retry ceiling.
        """
        attempts = self.max_retries + 1
        attempt = 1

        while True:
            started = time.monotonic()
            try:
                resp = self._request(url, timeout or self.timeout)
            except FetchFailure as exc:
                if not exc.transient or attempt == attempts:
                    logger.info("Fetch failed for %s: %s", url, exc.reason)
                    raise
                wait = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "Retry %d/%d for %s (wait %.1fs): %s",
                    attempt, self.max_retries, url, wait, exc.reason,
                )
                time.sleep(wait)
                attempt += 1
                continue

            elapsed_ms = int((time.monotonic() - started) * 1000)
            return self._to_result(url, resp, elapsed_ms, accept)

    # -- internals ------------------------------------------------------------

    def _request(self, url: str, timeout: float) -> requests.Response:
        try:
            resp = self._session.get(url, headers=self.headers, timeout=timeout, allow_redirects=True)
        except (requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema,
                requests.exceptions.InvalidURL) as exc:
            raise FetchFailure(url, f"Malformed URL: {exc}") from exc
        except requests.TooManyRedirects as exc:
            raise FetchFailure(url, "Too many redirects") from exc
        except requests.Timeout as exc:
            raise FetchFailure(url, "Request timeout", transient=True) from exc
        except requests.ConnectionError as exc:
            raise FetchFailure(url, "Domain not found / connection refused", transient=True) from exc
        except requests.RequestException as exc:
            raise FetchFailure(url, f"Request failed: {exc}", transient=True) from exc

        status = resp.status_code
        if status >= 400:
            reason = f"HTTP {status}: {resp.reason or 'Error'}"
            raise FetchFailure(url, reason, status_code=status, transient=status >= 500 or status == 429)
        return resp

    @staticmethod
    def _to_result(
        url: str,
        resp: requests.Response,
        elapsed_ms: int,
        accept: tuple[str, ...],
    ) -> FetchResult:
        content_type = resp.headers.get("content-type", "")
        media_type = content_type.split(";")[0].strip().lower()
        if media_type and media_type not in accept:
            raise FetchFailure(
                url,
                f"Unsupported content type {media_type}",
                status_code=resp.status_code,
            )

        html = resp.text or ""
        length_header = resp.headers.get("content-length")
        content_length = int(length_header) if length_header and length_header.isdigit() else len(html)

        return FetchResult(
            url=url,
            final_url=resp.url or url,
            status_code=resp.status_code,
            html=html,
            content_type=content_type,
            content_length=content_length,
            elapsed_ms=elapsed_ms,
            redirect_count=len(resp.history or []),
            encoding=resp.encoding,
            last_modified=resp.headers.get("last-modified"),
            etag=resp.headers.get("etag"),
        )
