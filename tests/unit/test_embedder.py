"""Unit tests for batched embedding, retries and cost accounting."""

from __future__ import annotations

import math
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest
from conftest import FakeEmbeddingProvider

from site_ingest.errors import EmbeddingDimensionError, EmbeddingFailure
from site_ingest.ingestion.embedder import (
    Embedder,
    OpenAIEmbeddingProvider,
    cosine_similarity,
    price_per_1k,
    validate_embedding,
)

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _embedder(provider: FakeEmbeddingProvider, **kwargs) -> Embedder:
    params = {"dimensions": provider.dims, "backoff_seconds": 1.0, "batch_delay_seconds": 0}
    params.update(kwargs)
    return Embedder(provider, **params)


class TestEmbedBatches:
    def test_vectors_align_with_input(self) -> None:
        provider = FakeEmbeddingProvider(dims=8)
        texts = ["alpha beta", "gamma delta epsilon", "zeta"]
        result = _embedder(provider, batch_size=2).embed(texts)

        assert provider.calls == 2
        assert len(result.vectors) == 3
        assert all(len(v) == 8 for v in result.vectors)
        assert result.all_succeeded
        assert result.embedded_count == 3

    def test_cost_from_reported_tokens(self) -> None:
        provider = FakeEmbeddingProvider(dims=8)
        result = _embedder(provider).embed(["a b", "c d e", "f"])

        assert result.total_tokens == 6
        assert result.cost == pytest.approx(6 / 1000 * 0.00002)
        assert result.model == "text-embedding-3-small"

    def test_text_is_whitespace_collapsed_and_truncated(self) -> None:
        provider = MagicMock(model="text-embedding-3-small")
        provider.embed_batch.return_value = SimpleNamespace(vectors=[[0.1, 0.2]], total_tokens=1)
        Embedder(provider, dimensions=2, max_chars=5).embed(["a  b\n\ncdefgh"])
        provider.embed_batch.assert_called_once_with(["a b c"])

    def test_delay_between_batches(self) -> None:
        provider = FakeEmbeddingProvider(dims=4)
        with patch("time.sleep") as sleep:
            _embedder(provider, batch_size=1, batch_delay_seconds=0.1).embed(["a", "b", "c"])
        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.1]


class TestRetries:
    def test_transient_failure_retried(self) -> None:
        provider = FakeEmbeddingProvider(dims=4, fail_on_calls={1, 2}, transient=True)
        with patch("time.sleep") as sleep:
            result = _embedder(provider, max_retries=3).embed(["hello world"])

        assert result.all_succeeded
        assert provider.calls == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_permanent_failure_not_retried(self) -> None:
        provider = FakeEmbeddingProvider(dims=4, fail_on_calls={1})
        with patch("time.sleep") as sleep:
            result = _embedder(provider, max_retries=3).embed(["hello"])

        assert provider.calls == 1
        sleep.assert_not_called()
        assert result.vectors == [None]
        assert result.failed_indices == [0]

    def test_failed_batch_leaves_gaps(self) -> None:
        provider = FakeEmbeddingProvider(dims=4, fail_on_calls={2})
        result = _embedder(provider, batch_size=2, max_retries=0).embed(["a", "b", "c", "d", "e"])

        assert result.failed_indices == [2, 3]
        assert result.vectors[2] is None and result.vectors[3] is None
        assert result.vectors[0] is not None and result.vectors[4] is not None
        assert result.embedded_count == 3
        assert len(result.errors) == 1
        assert result.total_tokens == 3


class TestValidation:
    def test_dimension_mismatch_raises(self) -> None:
        provider = FakeEmbeddingProvider(dims=4)
        with pytest.raises(EmbeddingDimensionError):
            Embedder(provider, dimensions=1536, batch_delay_seconds=0).embed(["hello"])

    def test_vector_count_mismatch_fails_batch(self) -> None:
        provider = MagicMock(model="text-embedding-3-small")
        provider.embed_batch.return_value = SimpleNamespace(vectors=[[0.0, 1.0]], total_tokens=2)
        result = Embedder(provider, dimensions=2, batch_delay_seconds=0).embed(["a", "b"])
        assert result.failed_indices == [0, 1]

    def test_validate_embedding(self) -> None:
        assert validate_embedding([0.1, 0.2], 2)
        assert not validate_embedding([0.1], 2)
        assert not validate_embedding([0.1, math.nan], 2)
        assert not validate_embedding(None, 2)


class TestHelpers:
    def test_cosine_similarity(self) -> None:
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_cosine_similarity_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_unknown_model_price_falls_back(self) -> None:
        assert price_per_1k("custom-model") == price_per_1k("text-embedding-3-small")


class TestOpenAIProvider:
    def _client(self) -> MagicMock:
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.3, 0.4]),
                SimpleNamespace(index=0, embedding=[0.1, 0.2]),
            ],
            usage=SimpleNamespace(total_tokens=7),
        )
        return client

    def test_orders_by_index_and_reports_usage(self) -> None:
        client = self._client()
        provider = OpenAIEmbeddingProvider("text-embedding-3-small", dimensions=2, client=client)
        response = provider.embed_batch(["first", "second"])

        assert response.vectors == [[0.1, 0.2], [0.3, 0.4]]
        assert response.total_tokens == 7
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["first", "second"], dimensions=2,
        )

    def test_dimensions_only_sent_for_v3_models(self) -> None:
        client = self._client()
        OpenAIEmbeddingProvider("text-embedding-ada-002", client=client).embed_batch(["x", "y"])
        assert "dimensions" not in client.embeddings.create.call_args.kwargs

    def test_rate_limit_is_transient(self) -> None:
        client = MagicMock()
        client.embeddings.create.side_effect = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=_REQUEST), body=None,
        )
        with pytest.raises(EmbeddingFailure) as excinfo:
            OpenAIEmbeddingProvider(client=client).embed_batch(["x"])
        assert excinfo.value.transient

    def test_connection_error_is_transient(self) -> None:
        client = MagicMock()
        client.embeddings.create.side_effect = openai.APIConnectionError(request=_REQUEST)
        with pytest.raises(EmbeddingFailure) as excinfo:
            OpenAIEmbeddingProvider(client=client).embed_batch(["x"])
        assert excinfo.value.transient

    def test_bad_request_is_permanent(self) -> None:
        client = MagicMock()
        client.embeddings.create.side_effect = openai.BadRequestError(
            "bad input", response=httpx.Response(400, request=_REQUEST), body=None,
        )
        with pytest.raises(EmbeddingFailure) as excinfo:
            OpenAIEmbeddingProvider(client=client).embed_batch(["x"])
        assert not excinfo.value.transient
