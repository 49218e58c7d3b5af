"""Unit tests for request validation and result serialisation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from site_ingest.errors import ValidationFailure
from site_ingest.pipeline.models import (
    AddPageRequest,
    FullCrawlRequest,
    PipelineResult,
    describe_validation_error,
    validate_request,
)


class TestFullCrawlRequest:
    def test_defaults(self) -> None:
        request = FullCrawlRequest(website_url="https://example.com")
        assert request.max_pages == 10
        assert request.max_depth == 1

    def test_accepts_camel_case(self) -> None:
        request = FullCrawlRequest.model_validate({"websiteUrl": "https://example.com", "maxPages": 50})
        assert request.max_pages == 50

    @pytest.mark.parametrize(
        "payload",
        [
            {"website_url": "example.com"},
            {"website_url": "https://example.com", "max_pages": 0},
            {"website_url": "https://example.com", "max_pages": 101},
            {"website_url": "https://example.com", "max_depth": 6},
        ],
    )
    def test_rejects_bad_input(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            FullCrawlRequest(**payload)


class TestAddPageRequest:
    def test_default_priority(self) -> None:
        request = AddPageRequest(website_url="https://example.com", page_url="https://example.com/a")
        assert request.priority == 80
        explicit_none = AddPageRequest(
            website_url="https://example.com", page_url="https://example.com/a", priority=None,
        )
        assert explicit_none.priority == 80

    def test_priority_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            AddPageRequest(website_url="https://example.com", page_url="https://example.com/a", priority=150)

    def test_domain_mismatch(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AddPageRequest(website_url="https://example.com", page_url="https://other.com/a")
        message = describe_validation_error(excinfo.value)
        assert "Page URL domain (other.com) doesn't match website domain (example.com)" in message

    def test_subdomain_is_a_mismatch(self) -> None:
        with pytest.raises(ValidationError):
            AddPageRequest(website_url="https://example.com", page_url="https://docs.example.com/a")

    def test_malformed_page_url_message(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            AddPageRequest(website_url="https://example.com", page_url="not a url")
        assert "pageUrl must be a well-formed http(s) URL" in describe_validation_error(excinfo.value)


class TestPipelineResult:
    def test_serialises_camel_case(self) -> None:
        dumped = PipelineResult(success=False, error="Run failed", message="x").model_dump(by_alias=True)
        assert set(dumped["summary"]) >= {"pagesDiscovered", "pagesProcessed", "totalCost", "averageQuality"}


class TestValidateRequest:
    def test_returns_model(self) -> None:
        request = validate_request(FullCrawlRequest, website_url="https://example.com", max_pages=5)
        assert request.max_pages == 5

    def test_raises_validation_failure(self) -> None:
        with pytest.raises(ValidationFailure, match="maxPages|max_pages"):
            validate_request(FullCrawlRequest, website_url="https://example.com", max_pages=0)
