"""Unit tests for the EmbeddingBatchProcessor -- budgets, retries, resume."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.services.embedding_batcher import (
    STOP_BATCH_ERROR,
    STOP_BATCH_TIMEOUT,
    STOP_INVALID_RESPONSE,
    STOP_OVERALL_TIMEOUT,
    EmbeddingBatchProcessor,
)
from docrag.utils.errors import EmbeddingError, RateLimitError

_DIM = 8


def _vectors(texts: list[str]) -> list[list[float]]:
    return [[float(i + 1)] * _DIM for i in range(len(texts))]


def _provider(side_effect) -> MagicMock:
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.embed = AsyncMock(side_effect=side_effect)
    mock.get_provider_name.return_value = "mock_embedding"
    mock.get_dimension.return_value = _DIM
    return mock


def _processor(provider, **overrides) -> EmbeddingBatchProcessor:
    options = {
        "batch_size": 100,
        "batch_timeout": 0.2,
        "overall_timeout": 5.0,
        "max_retries": 1,
        "retry_backoff": 0.0,
    }
    options.update(overrides)
    return EmbeddingBatchProcessor(provider, **options)


def _texts(count: int) -> list[str]:
    return [f"chunk {i}" for i in range(count)]


class TestFullRun:
    @pytest.mark.asyncio
    async def test_all_batches_succeed(self) -> None:
        provider = _provider(lambda texts: _vectors(texts))
        result = await _processor(provider).embed_chunks(_texts(250), job_id="j1")

        assert result.fully_embedded is True
        assert result.chunks_embedded == 250
        assert result.embedded_through == 249
        assert result.batches_completed == 3
        assert result.stop_reason is None
        assert sorted(result.vectors) == list(range(250))
        assert [len(call.args[0]) for call in provider.embed.call_args_list] == [100, 100, 50]

    @pytest.mark.asyncio
    async def test_empty_input_is_fully_embedded(self) -> None:
        provider = _provider(lambda texts: _vectors(texts))
        result = await _processor(provider).embed_chunks([])

        assert result.fully_embedded is True
        assert result.chunks_embedded == 0
        provider.embed.assert_not_called()


class TestPartialRuns:
    @pytest.mark.asyncio
    async def test_third_batch_timeout_keeps_first_two(self) -> None:
        calls = {"n": 0}

        async def embed(texts):
            calls["n"] += 1
            if calls["n"] == 3:
                await asyncio.sleep(5)
            return _vectors(texts)

        provider = _provider(embed)
        result = await _processor(provider, batch_timeout=0.1).embed_chunks(_texts(250))

        assert result.chunks_embedded == 200
        assert result.embedded_through == 199
        assert result.fully_embedded is False
        assert result.stop_reason == STOP_BATCH_TIMEOUT
        assert sorted(result.vectors) == list(range(200))
        # timeouts are not retried
        assert provider.embed.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_is_retried_once(self) -> None:
        provider = _provider(
            [RateLimitError(provider_name="mock"), _vectors(["a"] * 100), _vectors(["b"] * 20)]
        )
        result = await _processor(provider).embed_chunks(_texts(120))

        assert result.fully_embedded is True
        assert provider.embed.await_count == 3

    @pytest.mark.asyncio
    async def test_error_after_retry_stops_the_run(self) -> None:
        provider = _provider(
            [
                _vectors(["a"] * 100),
                EmbeddingError("boom", provider_name="mock"),
                EmbeddingError("boom again", provider_name="mock"),
            ]
        )
        result = await _processor(provider).embed_chunks(_texts(150))

        assert result.chunks_embedded == 100
        assert result.stop_reason == STOP_BATCH_ERROR
        assert "boom again" in (result.last_error or "")
        assert provider.embed.await_count == 3

    @pytest.mark.asyncio
    async def test_first_batch_failure_embeds_nothing(self) -> None:
        provider = _provider(ValueError("unexpected"))
        result = await _processor(provider, max_retries=0).embed_chunks(_texts(10))

        assert result.chunks_embedded == 0
        assert result.embedded_through == -1
        assert result.vectors == {}
        assert result.stop_reason == STOP_BATCH_ERROR

    @pytest.mark.asyncio
    async def test_wrong_vector_count_is_invalid_response(self) -> None:
        provider = _provider(lambda texts: _vectors(texts)[:-1])
        result = await _processor(provider).embed_chunks(_texts(5))

        assert result.stop_reason == STOP_INVALID_RESPONSE
        assert result.chunks_embedded == 0

    @pytest.mark.asyncio
    async def test_dimension_must_match_expected(self) -> None:
        provider = _provider(lambda texts: _vectors(texts))
        result = await _processor(provider).embed_chunks(_texts(5), expected_dimension=_DIM + 1)

        assert result.stop_reason == STOP_INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_overall_timeout_stops_between_batches(self) -> None:
        async def slow(texts):
            await asyncio.sleep(0.08)
            return _vectors(texts)

        provider = _provider(slow)
        processor = _processor(provider, batch_size=10, batch_timeout=1.0, overall_timeout=0.2)
        result = await processor.embed_chunks(_texts(100))

        assert 0 < result.chunks_embedded < 100
        assert result.stop_reason == STOP_OVERALL_TIMEOUT
        assert result.chunks_embedded % 10 == 0


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_embeds_only_the_remainder(self) -> None:
        provider = _provider(lambda texts: _vectors(texts))
        result = await _processor(provider).embed_chunks(_texts(250), start_index=200)

        assert sorted(result.vectors) == list(range(200, 250))
        assert result.fully_embedded is True
        assert result.chunks_embedded == 250
        assert provider.embed.await_count == 1

    @pytest.mark.asyncio
    async def test_start_index_out_of_range(self) -> None:
        provider = _provider(lambda texts: _vectors(texts))
        with pytest.raises(ValueError):
            await _processor(provider).embed_chunks(_texts(3), start_index=4)

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            _processor(_provider(lambda texts: []), batch_size=0)

    @pytest.mark.asyncio
    async def test_caller_deadline_stops_before_own_budget(self) -> None:
        calls = {"n": 0}

        async def embed(texts):
            calls["n"] += 1
            if calls["n"] > 1:
                await asyncio.sleep(5)
            return _vectors(texts)

        provider = _provider(embed)
        processor = _processor(provider, batch_size=5, batch_timeout=5.0, overall_timeout=5.0)
        started = time.monotonic()
        result = await processor.embed_chunks(_texts(20), deadline=time.monotonic() + 0.3)

        assert time.monotonic() - started < 2.0
        assert sorted(result.vectors) == list(range(5))
        assert result.embedded_through == 4
        assert result.stop_reason == STOP_OVERALL_TIMEOUT
