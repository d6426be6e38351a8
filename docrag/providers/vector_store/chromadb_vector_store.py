"""ChromaDB vector store adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
The collection is created in cosine space, so ``1 - distance`` is the cosine
similarity used everywhere else in docrag.  Embeddings are always computed
by our own :class:`IEmbeddingProvider`; ChromaDB never embeds anything.

The chromadb client is synchronous; calls run in ``asyncio.to_thread`` so a
deadline around a write or query can actually fire.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# Must be set before chromadb is imported.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from docrag.interfaces.vector_store_provider import IVectorStoreProvider
from docrag.models.rag import DocumentChunk, ScoredChunk, chunk_id_for
from docrag.utils.errors import ConfigurationError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

# Extra candidates fetched beyond top_k so equal scores at the cut-off can be
# re-ordered deterministically by the retrieval engine.
_TIE_MARGIN = 10


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default ONNX model."""

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("docrag passes pre-computed embeddings only.")

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBVectorStore(IVectorStoreProvider):
    """Chunk index backed by a persistent ChromaDB collection."""

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "docrag_chunks",
        embedding_dimension: int | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=_NoopEmbeddingFunction(),
        )
        if embedding_dimension is not None:
            self._validate_embedding_dimension(embedding_dimension)

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def _validate_embedding_dimension(self, expected_dim: int) -> None:
        """Refuse to start when stored vectors came from another model."""
        if self._collection.count() == 0:
            return
        sample = self._collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return
        stored_dim = len(embeddings[0])
        if stored_dim != expected_dim:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=expected_dim,
            )
            raise ConfigurationError(
                message=(
                    f"Embedding dimension mismatch: index holds {stored_dim}-dim vectors "
                    f"but the embedding provider produces {expected_dim}-dim vectors."
                ),
                provider_name=self.get_provider_name(),
            )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def add_chunks(
        self,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Upsert chunks; ids are deterministic so re-writes replace rows."""
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"chunks and embeddings length mismatch: {len(chunks)} != {len(embeddings)}"
            )
        if not chunks:
            return 0

        try:
            await asyncio.to_thread(
                self._collection.upsert,
                ids=[c.chunk_id for c in chunks],
                embeddings=embeddings,
                documents=[c.text for c in chunks],
                metadatas=[self._chunk_to_metadata(c) for c in chunks],
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug("chromadb_add_chunks", count=len(chunks), job_id=chunks[0].job_id)
        return len(chunks)

    async def query(
        self,
        query_embedding: list[float],
        job_ids: list[str],
        top_k: int,
    ) -> list[ScoredChunk]:
        if not job_ids or top_k <= 0:
            return []
        try:
            total = await asyncio.to_thread(self._collection.count)
            if total == 0:
                return []
            fetch_k = min(top_k + _TIE_MARGIN, total)
            results = await asyncio.to_thread(
                self._collection.query,
                query_embeddings=[query_embedding],
                n_results=fetch_k,
                where=self._job_filter(job_ids),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["documents"] or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(documents)
        distances = results["distances"][0] if results["distances"] else [1.0] * len(documents)

        hits: list[ScoredChunk] = []
        for doc_text, meta, distance in zip(documents, metadatas, distances, strict=True):
            similarity = max(0.0, min(1.0, 1.0 - float(distance)))
            hits.append(
                ScoredChunk(chunk=self._metadata_to_chunk(meta, doc_text), similarity=similarity)
            )

        logger.info(
            "chromadb_query",
            candidate_jobs=len(job_ids),
            raw_results=len(hits),
            top_score=hits[0].similarity if hits else 0.0,
        )
        return hits

    async def count_by_job(self, job_ids: list[str]) -> dict[str, int]:
        counts: dict[str, int] = {}
        try:
            for job_id in dict.fromkeys(job_ids):
                page = await asyncio.to_thread(
                    self._collection.get, where={"job_id": job_id}, include=[]
                )
                counts[job_id] = len(page["ids"]) if page["ids"] else 0
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return counts

    async def get_chunk_indices(self, job_id: str) -> set[int]:
        try:
            page = await asyncio.to_thread(
                self._collection.get, where={"job_id": job_id}, include=["metadatas"]
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB get failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return {int(m["chunk_index"]) for m in (page["metadatas"] or [])}

    async def delete_by_job(self, job_id: str) -> int:
        try:
            existing = await asyncio.to_thread(
                self._collection.get, where={"job_id": job_id}, include=[]
            )
            ids = existing["ids"] or []
            if ids:
                await asyncio.to_thread(self._collection.delete, ids=ids)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_by_job", job_id=job_id, deleted_count=len(ids))
        return len(ids)

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        try:
            self._collection.count()
        except Exception:  # noqa: BLE001
            return False
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _job_filter(job_ids: list[str]) -> dict[str, Any]:
        unique = list(dict.fromkeys(job_ids))
        if len(unique) == 1:
            return {"job_id": unique[0]}
        return {"job_id": {"$in": unique}}

    @staticmethod
    def _chunk_to_metadata(chunk: DocumentChunk) -> dict[str, Any]:
        return {
            "job_id": chunk.job_id,
            "chunk_index": chunk.chunk_index,
            "start_offset": chunk.start_offset,
            "end_offset": chunk.end_offset,
            "estimated_tokens": chunk.estimated_tokens,
        }

    @staticmethod
    def _metadata_to_chunk(meta: dict[str, Any], text: str) -> DocumentChunk:
        job_id = str(meta["job_id"])
        index = int(meta["chunk_index"])
        return DocumentChunk(
            chunk_id=chunk_id_for(job_id, index),
            job_id=job_id,
            chunk_index=index,
            text=text,
            start_offset=int(meta.get("start_offset", 0)),
            end_offset=int(meta.get("end_offset", 0)),
            estimated_tokens=int(meta.get("estimated_tokens", 0)),
        )
