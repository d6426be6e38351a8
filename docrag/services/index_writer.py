"""Persists embedded chunks to the vector store.

Rows are keyed ``<job_id>:<chunk_index>``, so writing the same index twice
replaces the row instead of adding a second one; a job can never end up
with two overlapping chunk sets.  Re-ingesting a finished job is refused
earlier by the job state machine.

Writes go out in batches.  When a batch write fails it is retried row by
row; rows that still fail are logged, skipped and counted, and the rest of
the job's chunks are written regardless.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from docrag.interfaces.vector_store_provider import IVectorStoreProvider
from docrag.models.rag import DocumentChunk, chunk_id_for
from docrag.services.chunker import TextChunk
from docrag.utils.deadlines import with_deadline
from docrag.utils.errors import DeadlineExceededError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_WRITE_ERRORS = (VectorStoreError, DeadlineExceededError)


@dataclass
class IndexWriteResult:
    written: int = 0
    failed_indices: list[int] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_indices)


class VectorIndexWriter:
    """Writes ``DocumentChunk`` rows for every chunk that has a vector."""

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        write_batch_size: int = 100,
        write_timeout: float = 15.0,
    ) -> None:
        self._store = vector_store
        self._batch_size = max(1, write_batch_size)
        self._write_timeout = write_timeout

    async def write(
        self,
        job_id: str,
        chunks: list[TextChunk],
        vectors: dict[int, list[float]],
    ) -> IndexWriteResult:
        """Write each chunk of *chunks* whose index appears in *vectors*.

        Parameters
        ----------
        job_id:
            Owning job; every row is scoped to it.
        chunks:
            All chunks of the document, in index order.
        vectors:
            Chunk index to vector, possibly partial.

        Returns
        -------
        IndexWriteResult
            Rows written and the indices that were skipped after failing.
        """
        rows = [
            (self._to_document_chunk(job_id, chunk), vectors[chunk.index])
            for chunk in chunks
            if chunk.index in vectors
        ]
        result = IndexWriteResult()

        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            try:
                await self._add(batch, operation="vector_write_batch")
                result.written += len(batch)
                continue
            except _WRITE_ERRORS as exc:
                logger.warning(
                    "vector_write_batch_failed",
                    job_id=job_id,
                    first_index=batch[0][0].chunk_index,
                    size=len(batch),
                    error=str(exc),
                )

            for row in batch:
                try:
                    await self._add([row], operation="vector_write_row")
                    result.written += 1
                except _WRITE_ERRORS as exc:
                    result.failed_indices.append(row[0].chunk_index)
                    logger.warning(
                        "chunk_write_skipped",
                        job_id=job_id,
                        chunk_index=row[0].chunk_index,
                        error=str(exc),
                    )

        logger.info(
            "vector_index_written",
            job_id=job_id,
            written=result.written,
            failed=result.failed,
        )
        return result

    async def _add(self, rows: list[tuple[DocumentChunk, list[float]]], operation: str) -> int:
        docs = [doc for doc, _ in rows]
        embeddings = [vec for _, vec in rows]
        return await with_deadline(
            lambda: self._store.add_chunks(docs, embeddings),
            timeout=self._write_timeout,
            operation=operation,
            provider_name=self._store.get_provider_name(),
        )

    @staticmethod
    def _to_document_chunk(job_id: str, chunk: TextChunk) -> DocumentChunk:
        return DocumentChunk(
            chunk_id=chunk_id_for(job_id, chunk.index),
            job_id=job_id,
            chunk_index=chunk.index,
            text=chunk.text,
            start_offset=chunk.start,
            end_offset=chunk.end,
            estimated_tokens=chunk.estimated_tokens,
        )
