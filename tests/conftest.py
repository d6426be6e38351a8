"""Shared pytest fixtures for the docrag test suite."""

from __future__ import annotations

import math
import re
from hashlib import blake2b
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from docrag.config.settings import Settings
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.models.job import STAGE_TO_STATUS, JobMetadata, JobStage, JobStatus, ProcessingJob
from docrag.providers.job_store.sqlite_job_store import SQLiteJobStore
from docrag.providers.object_store.local_object_store import LocalObjectStore
from docrag.providers.vector_store.chromadb_vector_store import ChromaDBVectorStore
from docrag.services.chunker import TextChunker

TEST_DIMENSION = 64
_WORD = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Deterministic embedding provider
# ---------------------------------------------------------------------------


class HashingEmbeddingProvider(IEmbeddingProvider):
    """Bag-of-words hashing embedder; identical text gives identical vectors.

    Texts sharing words have positive cosine similarity, which is enough for
    ranking assertions without a real model.
    """

    def __init__(self, dimension: int = TEST_DIMENSION) -> None:
        self._dimension = dimension
        self.calls: list[int] = []

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        tokens = _WORD.findall(text.lower())
        if not tokens:
            vector[0] = 1.0
            return vector
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest[:4], "little") % self._dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(len(texts))
        return [self._embed(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return self._embed(text)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "hashing"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Settings and collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every store at *tmp_path*, with short budgets."""
    return Settings(
        _env_file=None,
        embedding_provider="nomic",
        job_db_path=str(tmp_path / "jobs.db"),
        chromadb_persist_dir=str(tmp_path / "chroma"),
        chromadb_collection="test_chunks",
        object_store_root=str(tmp_path / "objects"),
        public_base_url="http://testserver",
        upload_signing_secret="test-secret",
        max_upload_bytes=1024 * 1024,
        embedding_batch_timeout_seconds=2.0,
        embedding_overall_timeout_seconds=10.0,
        embedding_retry_backoff_seconds=0.0,
        extraction_timeout_seconds=5.0,
        storage_write_timeout_seconds=5.0,
        pipeline_timeout_seconds=20.0,
        query_embedding_timeout_seconds=2.0,
        app_env="test",
    )


@pytest.fixture
def hashing_embedder() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def mock_embedding_provider() -> MagicMock:
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.embed = AsyncMock(side_effect=lambda texts: [[0.1] * TEST_DIMENSION for _ in texts])
    mock.embed_single = AsyncMock(return_value=[0.1] * TEST_DIMENSION)
    mock.get_dimension.return_value = TEST_DIMENSION
    mock.get_provider_name.return_value = "mock_embedding"
    mock.is_available.return_value = True
    return mock


@pytest_asyncio.fixture
async def job_store(tmp_path: Path) -> SQLiteJobStore:
    store = SQLiteJobStore(db_path=tmp_path / "jobs.db")
    await store.initialize()
    return store


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(
        root=tmp_path / "objects",
        public_base_url="http://testserver",
        signing_secret="test-secret",
    )


@pytest.fixture
def vector_store(tmp_path: Path) -> ChromaDBVectorStore:
    return ChromaDBVectorStore(
        persist_directory=str(tmp_path / "chroma"),
        collection_name="test_chunks",
        embedding_dimension=TEST_DIMENSION,
    )


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(chunk_size=2000, overlap=150, break_tolerance=200)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_job(
    job_id: str = "job-1",
    owner_id: str = "owner-1",
    stage: JobStage = JobStage.REGISTERED,
    status: JobStatus | None = None,
    file_name: str = "notes.txt",
    file_type: str = "text/plain",
    metadata: dict[str, Any] | None = None,
) -> ProcessingJob:
    """Build a ProcessingJob without going through the state machine."""
    return ProcessingJob(
        id=job_id,
        owner_id=owner_id,
        file_name=file_name,
        file_type=file_type,
        file_size=128,
        storage_key=f"incoming/{job_id}-{file_name}",
        stage=stage,
        status=status or STAGE_TO_STATUS[stage] or JobStatus.PROCESSING,
        metadata=JobMetadata.model_validate(metadata or {}),
    )


@pytest.fixture
def job_factory():
    """Return :func:`make_job` so tests can build jobs at any stage."""
    return make_job
