"""Unit tests for the HTTP fetcher."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from site_ingest.crawling.fetcher import Fetcher
from site_ingest.errors import FetchFailure

URL = "https://example.com/docs"


def _response(
    status: int = 200,
    text: str = "<html><body><p>Hello</p></body></html>",
    content_type: str = "text/html; charset=utf-8",
    url: str = URL,
    reason: str = "OK",
) -> MagicMock:
    return MagicMock(
        status_code=status,
        text=text,
        headers={"content-type": content_type, "etag": '"abc"'},
        url=url,
        history=[],
        encoding="utf-8",
        reason=reason,
    )


def _fetcher(session: MagicMock, **kwargs) -> Fetcher:
    return Fetcher(session=session, backoff_seconds=0.5, **kwargs)


class TestFetchSuccess:
    def test_returns_body_and_metadata(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(url="https://example.com/docs/")
        result = _fetcher(session).fetch(URL)

        assert result.html.startswith("<html>")
        assert result.status_code == 200
        assert result.final_url == "https://example.com/docs/"
        assert result.etag == '"abc"'
        assert result.content_length == len(result.html)

    def test_sends_headers_and_timeout(self) -> None:
        session = MagicMock()
        session.get.return_value = _response()
        _fetcher(session, timeout=12, user_agent="test-agent").fetch(URL)

        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == 12
        assert kwargs["headers"]["User-Agent"] == "test-agent"
        assert kwargs["allow_redirects"] is True

    def test_redirect_ceiling_applied_to_session(self) -> None:
        session = MagicMock()
        _fetcher(session, max_redirects=2)
        assert session.max_redirects == 2


class TestFetchRetries:
    def test_retries_5xx_then_succeeds(self) -> None:
        session = MagicMock()
        session.get.side_effect = [_response(503, reason="Service Unavailable"), _response()]

        with patch("time.sleep") as sleep:
            result = _fetcher(session).fetch(URL)

        assert result.status_code == 200
        assert session.get.call_count == 2
        sleep.assert_called_once_with(0.5)

    def test_backoff_is_exponential(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")

        with patch("time.sleep") as sleep, pytest.raises(FetchFailure, match="Request timeout"):
            _fetcher(session, max_retries=3).fetch(URL)

        assert session.get.call_count == 4
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0, 2.0]

    def test_exhausted_retries_raise_last_failure(self) -> None:
        session = MagicMock()
        session.get.side_effect = [requests.Timeout("slow"), _response(502, reason="Bad Gateway")]

        with patch("time.sleep"), pytest.raises(FetchFailure) as excinfo:
            _fetcher(session, max_retries=1).fetch(URL)

        assert excinfo.value.status_code == 502
        assert excinfo.value.reason == "HTTP 502: Bad Gateway"

    def test_retries_disabled(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")

        with patch("time.sleep") as sleep, pytest.raises(FetchFailure, match="Request timeout"):
            _fetcher(session, max_retries=0).fetch(URL)

        assert session.get.call_count == 1
        sleep.assert_not_called()

    def test_connection_error_is_unreachable(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")

        with patch("time.sleep"), pytest.raises(FetchFailure) as excinfo:
            _fetcher(session, max_retries=1).fetch(URL)

        assert excinfo.value.unreachable
        assert excinfo.value.transient
        assert session.get.call_count == 2

    def test_429_is_retried(self) -> None:
        session = MagicMock()
        session.get.side_effect = [_response(429, reason="Too Many Requests"), _response()]
        with patch("time.sleep"):
            assert _fetcher(session).fetch(URL).status_code == 200


class TestPermanentFailures:
    def test_404_not_retried(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(404, reason="Not Found")

        with patch("time.sleep") as sleep, pytest.raises(FetchFailure, match="HTTP 404: Not Found") as excinfo:
            _fetcher(session).fetch(URL)

        assert session.get.call_count == 1
        sleep.assert_not_called()
        assert excinfo.value.status_code == 404
        assert not excinfo.value.unreachable

    def test_malformed_url(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.exceptions.MissingSchema("no schema")

        with pytest.raises(FetchFailure, match="Malformed URL"):
            _fetcher(session).fetch("example.com/docs")
        assert session.get.call_count == 1

    def test_too_many_redirects(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.TooManyRedirects("loop")
        with pytest.raises(FetchFailure, match="Too many redirects"):
            _fetcher(session).fetch(URL)

    def test_non_html_rejected(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(content_type="application/pdf")
        with pytest.raises(FetchFailure, match="Unsupported content type application/pdf"):
            _fetcher(session).fetch(URL)
