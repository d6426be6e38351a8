"""Unit tests for RetrievalService -- vector/legacy mix, fallback and ranking."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from docrag.models.job import ExtractedContent, JobStage
from docrag.models.rag import SearchMode
from docrag.services.chunker import TextChunker
from docrag.services.index_writer import VectorIndexWriter
from docrag.services.legacy_retriever import LegacyFallbackRetriever
from docrag.services.retrieval_service import RetrievalService
from docrag.utils.errors import EmbeddingError

_INDEXED_TEXT = "The quarterly invoice lists payment terms and the total amount due."
_EXTRACTED_TEXT = "Meeting notes about the office party and the parking garage."


def _service(job_store, vector_store, embedder, **kwargs) -> RetrievalService:
    return RetrievalService(
        job_store=job_store,
        vector_store=vector_store,
        embedding_provider=embedder,
        legacy_retriever=LegacyFallbackRetriever(TextChunker()),
        query_timeout=2.0,
        **kwargs,
    )


@pytest_asyncio.fixture
async def corpus(job_store, vector_store, hashing_embedder, job_factory, chunker):
    """Job ``vec`` has vectors, ``leg`` only text, ``new`` is not queryable."""
    await job_store.create_job(job_factory("vec", stage=JobStage.INDEXED, file_name="invoice.txt"))
    await job_store.create_job(job_factory("leg", stage=JobStage.EXTRACTED, file_name="notes.txt"))
    await job_store.create_job(job_factory("new", stage=JobStage.UPLOADED))
    await job_store.save_extracted_content(ExtractedContent(job_id="vec", text=_INDEXED_TEXT))
    await job_store.save_extracted_content(ExtractedContent(job_id="leg", text=_EXTRACTED_TEXT))

    chunks = chunker.split(_INDEXED_TEXT)
    vectors = await hashing_embedder.embed([c.text for c in chunks])
    await VectorIndexWriter(vector_store).write("vec", chunks, dict(enumerate(vectors)))
    return job_store


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_mixes_vector_and_legacy_jobs(self, corpus, vector_store, hashing_embedder) -> None:
        service = _service(corpus, vector_store, hashing_embedder)
        result = await service.retrieve("invoice total amount", job_ids=["vec", "leg", "new"])

        assert result.search_modes == {"vec": SearchMode.VECTOR, "leg": SearchMode.LEGACY}
        assert result.no_queryable_documents is False
        top = result.results[0]
        assert top.job_id == "vec"
        assert top.search_mode is SearchMode.VECTOR
        assert top.context_ref == "ctx://vec#chunk/1"
        assert top.file_name == "invoice.txt"
        legacy = [r for r in result.results if r.job_id == "leg"]
        assert legacy and legacy[0].similarity_score == 0.0

    @pytest.mark.asyncio
    async def test_blank_legacy_job_is_not_listed(
        self, corpus, vector_store, hashing_embedder, job_factory
    ) -> None:
        await corpus.create_job(job_factory("blank", stage=JobStage.INDEXED))
        await corpus.save_extracted_content(ExtractedContent(job_id="blank", text=""))
        service = _service(corpus, vector_store, hashing_embedder)

        result = await service.retrieve("parking", job_ids=["leg", "blank"])

        assert result.search_modes == {"leg": SearchMode.LEGACY}
        assert {r.job_id for r in result.results} == {"leg"}

    @pytest.mark.asyncio
    async def test_owner_scope_without_job_ids(self, corpus, vector_store, hashing_embedder) -> None:
        service = _service(corpus, vector_store, hashing_embedder)
        result = await service.retrieve("parking", owner_id="owner-1")
        assert set(result.search_modes) == {"vec", "leg"}

        other = await service.retrieve("parking", owner_id="someone-else")
        assert other.no_queryable_documents is True
        assert other.results == []

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back_to_legacy(
        self, corpus, vector_store, mock_embedding_provider
    ) -> None:
        mock_embedding_provider.embed_single = AsyncMock(
            side_effect=EmbeddingError("down", provider_name="mock_embedding")
        )
        service = _service(corpus, vector_store, mock_embedding_provider)

        result = await service.retrieve("invoice", job_ids=["vec", "leg"])

        assert result.search_modes == {"vec": SearchMode.LEGACY, "leg": SearchMode.LEGACY}
        assert result.results[0].job_id == "vec"
        assert result.results[0].similarity_score == 1.0

    @pytest.mark.asyncio
    async def test_floor_filters_vector_hits_only(
        self, corpus, vector_store, hashing_embedder
    ) -> None:
        service = _service(corpus, vector_store, hashing_embedder)
        result = await service.retrieve(
            "office party", job_ids=["vec", "leg"], similarity_floor=0.99
        )

        assert [r.job_id for r in result.results] == ["leg"]
        assert result.search_modes["vec"] is SearchMode.VECTOR

    @pytest.mark.asyncio
    async def test_top_k_is_capped(self, corpus, vector_store, hashing_embedder) -> None:
        service = _service(corpus, vector_store, hashing_embedder, max_top_k=1)
        result = await service.retrieve("invoice notes", job_ids=["vec", "leg"], top_k=10)
        assert len(result.results) == 1

    @pytest.mark.asyncio
    async def test_only_unqueryable_candidates(self, corpus, vector_store, hashing_embedder) -> None:
        service = _service(corpus, vector_store, hashing_embedder)
        result = await service.retrieve("anything", job_ids=["new", "ghost"])
        assert result.no_queryable_documents is True

    @pytest.mark.asyncio
    async def test_ranking_is_deterministic(self, corpus, vector_store, hashing_embedder) -> None:
        service = _service(corpus, vector_store, hashing_embedder)
        first = await service.retrieve("the", job_ids=["vec", "leg"])
        second = await service.retrieve("the", job_ids=["leg", "vec"])

        assert first.results == second.results
        scores = [r.similarity_score for r in first.results]
        assert scores == sorted(scores, reverse=True)
