"""Unit tests for the ChromaDB vector store adapter (real persistent client)."""

from __future__ import annotations

import pytest

from docrag.models.rag import DocumentChunk, chunk_id_for
from docrag.providers.vector_store.chromadb_vector_store import ChromaDBVectorStore
from docrag.utils.errors import ConfigurationError

_DIM = 64


def _chunk(job_id: str, index: int, text: str | None = None) -> DocumentChunk:
    body = text or f"{job_id} chunk {index}"
    return DocumentChunk(
        chunk_id=chunk_id_for(job_id, index),
        job_id=job_id,
        chunk_index=index,
        text=body,
        start_offset=index * 100,
        end_offset=index * 100 + len(body),
        estimated_tokens=3,
    )


def _axis(position: int) -> list[float]:
    vector = [0.0] * _DIM
    vector[position] = 1.0
    return vector


class TestWrites:
    @pytest.mark.asyncio
    async def test_add_and_count(self, vector_store) -> None:
        written = await vector_store.add_chunks(
            [_chunk("a", 0), _chunk("a", 1), _chunk("b", 0)],
            [_axis(0), _axis(1), _axis(2)],
        )

        assert written == 3
        assert await vector_store.count_by_job(["a", "b", "c"]) == {"a": 2, "b": 1, "c": 0}
        assert await vector_store.get_chunk_indices("a") == {0, 1}

    @pytest.mark.asyncio
    async def test_rewrite_replaces_row(self, vector_store) -> None:
        await vector_store.add_chunks([_chunk("a", 0, "old text")], [_axis(0)])
        await vector_store.add_chunks([_chunk("a", 0, "new text")], [_axis(0)])

        assert await vector_store.count_by_job(["a"]) == {"a": 1}
        hits = await vector_store.query(_axis(0), ["a"], top_k=5)
        assert [h.chunk.text for h in hits] == ["new text"]

    @pytest.mark.asyncio
    async def test_length_mismatch_rejected(self, vector_store) -> None:
        with pytest.raises(ValueError):
            await vector_store.add_chunks([_chunk("a", 0)], [])

    @pytest.mark.asyncio
    async def test_empty_write_is_noop(self, vector_store) -> None:
        assert await vector_store.add_chunks([], []) == 0

    @pytest.mark.asyncio
    async def test_delete_by_job(self, vector_store) -> None:
        await vector_store.add_chunks([_chunk("a", 0), _chunk("b", 0)], [_axis(0), _axis(1)])

        assert await vector_store.delete_by_job("a") == 1
        assert await vector_store.count_by_job(["a", "b"]) == {"a": 0, "b": 1}
        assert await vector_store.delete_by_job("a") == 0


class TestQuery:
    @pytest.mark.asyncio
    async def test_scoped_to_requested_jobs(self, vector_store) -> None:
        await vector_store.add_chunks(
            [_chunk("a", 0), _chunk("b", 0), _chunk("c", 0)],
            [_axis(0), _axis(0), _axis(0)],
        )

        hits = await vector_store.query(_axis(0), ["a", "c"], top_k=10)
        assert sorted(h.chunk.job_id for h in hits) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_similarity_is_cosine_clamped(self, vector_store) -> None:
        await vector_store.add_chunks([_chunk("a", 0), _chunk("a", 1)], [_axis(0), _axis(5)])

        hits = await vector_store.query(_axis(0), ["a"], top_k=2)
        by_index = {h.chunk.chunk_index: h.similarity for h in hits}

        assert by_index[0] == pytest.approx(1.0, abs=1e-4)
        assert by_index[1] == pytest.approx(0.0, abs=1e-4)
        assert all(0.0 <= h.similarity <= 1.0 for h in hits)

    @pytest.mark.asyncio
    async def test_metadata_round_trips(self, vector_store) -> None:
        await vector_store.add_chunks([_chunk("a", 3)], [_axis(0)])
        (hit,) = await vector_store.query(_axis(0), ["a"], top_k=1)

        assert hit.chunk.chunk_id == "a:3"
        assert hit.chunk.start_offset == 300
        assert hit.chunk.estimated_tokens == 3

    @pytest.mark.asyncio
    async def test_empty_collection_or_no_jobs(self, vector_store) -> None:
        assert await vector_store.query(_axis(0), ["a"], top_k=5) == []
        assert await vector_store.query(_axis(0), [], top_k=5) == []


class TestDimensionCheck:
    @pytest.mark.asyncio
    async def test_reopening_with_other_dimension_fails(self, tmp_path, vector_store) -> None:
        await vector_store.add_chunks([_chunk("a", 0)], [_axis(0)])

        with pytest.raises(ConfigurationError):
            ChromaDBVectorStore(
                persist_directory=str(tmp_path / "chroma"),
                collection_name="test_chunks",
                embedding_dimension=_DIM // 2,
            )

    def test_available(self, vector_store) -> None:
        assert vector_store.is_available() is True
        assert vector_store.get_provider_name() == "chromadb"
