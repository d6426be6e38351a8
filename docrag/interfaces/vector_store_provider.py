"""Abstract base class for vector-store providers.

The vector store holds one row per embedded chunk, keyed by
``<job_id>:<chunk_index>``, and answers cosine-similarity queries restricted
to a set of candidate job ids.  It is the only mutable resource shared by
concurrent ingestion jobs; each job writes only the rows it owns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docrag.models.rag import DocumentChunk, ScoredChunk


# Concrete implementation: ChromaDBVectorStore (docrag/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for the chunk index.

    All methods are async so network-backed stores do not block the loop.
    """

    @abstractmethod
    async def add_chunks(
        self,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Upsert chunks with their pre-computed vectors.

        Parameters
        ----------
        chunks:
            Chunk rows; ``chunk_id`` is the primary key.
        embeddings:
            Vectors corresponding positionally to *chunks*.

        Returns
        -------
        int
            Number of rows written.

        Raises
        ------
        docrag.utils.errors.VectorStoreError
            If the write fails.  The whole call fails; callers that need
            per-row accounting retry row by row.
        """

    @abstractmethod
    async def query(
        self,
        query_embedding: list[float],
        job_ids: list[str],
        top_k: int,
    ) -> list[ScoredChunk]:
        """Return up to *top_k* nearest chunks among *job_ids*.

        Similarity is ``1 - cosine distance`` clamped to ``[0, 1]``.  Order
        of equal-score hits is unspecified; the retrieval engine imposes the
        final deterministic order.
        """

    @abstractmethod
    async def count_by_job(self, job_ids: list[str]) -> dict[str, int]:
        """Return the number of stored chunks for each of *job_ids*."""

    @abstractmethod
    async def get_chunk_indices(self, job_id: str) -> set[int]:
        """Return the chunk indices already stored for *job_id*."""

    @abstractmethod
    async def delete_by_job(self, job_id: str) -> int:
        """Delete every chunk of *job_id*; returns the number removed."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is ready to accept queries."""
