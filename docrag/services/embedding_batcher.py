"""Bounded, deadline-aware batch embedding of chunk texts.

Chunks are partitioned into fixed-size batches in index order and embedded
one batch per collaborator call.  Three budgets apply:

- **per-batch timeout**: a batch that runs past it is a failed batch; it is
  not retried.
- **bounded retry**: a transient provider error (``EmbeddingError``,
  ``RateLimitError``, ``ProviderUnavailableError``) gets at most
  ``max_retries`` further attempts with exponential backoff.
- **overall timeout**: no call may run past the run's absolute deadline.
  Once it is spent, processing stops immediately.

Processing stops at the first failed batch, so the embedded set is always a
contiguous prefix ``[start_index, embedded_through]``.  Partial success is a
normal outcome: the caller gets every vector that was produced plus
``fully_embedded`` and the last embedded index, and may resume later from
``embedded_through + 1``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import structlog

from docrag.config.settings import Settings
from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.utils.deadlines import remaining, with_deadline
from docrag.utils.errors import (
    DeadlineExceededError,
    EmbeddingError,
    ProviderUnavailableError,
)

logger = structlog.get_logger(logger_name=__name__)

_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (EmbeddingError, ProviderUnavailableError)

STOP_BATCH_TIMEOUT = "batch_timeout"
STOP_BATCH_ERROR = "batch_error"
STOP_OVERALL_TIMEOUT = "overall_timeout"
STOP_INVALID_RESPONSE = "invalid_response"


@dataclass
class EmbeddingBatchResult:
    """Vectors produced by one run plus how far the run got."""

    total_chunks: int
    start_index: int = 0
    # chunk index -> vector, only for chunks embedded by this run
    vectors: dict[int, list[float]] = field(default_factory=dict)
    # last index of the contiguous embedded prefix; start_index - 1 if none
    embedded_through: int = -1
    batches_completed: int = 0
    stop_reason: str | None = None
    last_error: str | None = None
    dimension: int | None = None
    elapsed_seconds: float = 0.0

    @property
    def fully_embedded(self) -> bool:
        return self.embedded_through >= self.total_chunks - 1

    @property
    def chunks_embedded(self) -> int:
        """Size of the contiguous embedded prefix, including earlier runs."""
        return self.embedded_through + 1


class EmbeddingBatchProcessor:
    """Turns an ordered list of chunk texts into vectors under strict budgets.

    Parameters
    ----------
    embedding_provider:
        The embedding-model collaborator.
    batch_size:
        Chunks per collaborator call (default 100).
    batch_timeout:
        Seconds allowed per batch call (default 30).
    overall_timeout:
        Seconds allowed for the whole run (default 300).
    max_retries:
        Retries per batch for transient errors (default 1).
    retry_backoff:
        Initial backoff in seconds before a retry (default 2).
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        batch_size: int = 100,
        batch_timeout: float = 30.0,
        overall_timeout: float = 300.0,
        max_retries: int = 1,
        retry_backoff: float = 2.0,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._provider = embedding_provider
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._overall_timeout = overall_timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

    @classmethod
    def from_settings(
        cls, embedding_provider: IEmbeddingProvider, settings: Settings
    ) -> EmbeddingBatchProcessor:
        return cls(
            embedding_provider=embedding_provider,
            batch_size=settings.embedding_batch_size,
            batch_timeout=settings.embedding_batch_timeout_seconds,
            overall_timeout=settings.embedding_overall_timeout_seconds,
            max_retries=settings.embedding_max_retries,
            retry_backoff=settings.embedding_retry_backoff_seconds,
        )

    async def embed_chunks(
        self,
        texts: list[str],
        start_index: int = 0,
        expected_dimension: int | None = None,
        job_id: str | None = None,
        deadline: float | None = None,
    ) -> EmbeddingBatchResult:
        """Embed ``texts[start_index:]`` batch by batch.

        Parameters
        ----------
        texts:
            All chunk texts of the document, in chunk-index order.
        start_index:
            First index to embed; earlier indices are assumed embedded by a
            previous run.
        expected_dimension:
            Vector length from an earlier run, if any; every vector in this
            run must match it.
        job_id:
            Only used for log context.
        deadline:
            Absolute ``time.monotonic()`` value imposed by the caller.  The
            run stops at whichever comes first, this or its own overall
            timeout.

        Returns
        -------
        EmbeddingBatchResult
            Never raises for provider failures or timeouts; those end the
            run and are reported in ``stop_reason``.
        """
        if start_index < 0 or start_index > len(texts):
            raise ValueError(f"start_index {start_index} out of range for {len(texts)} chunks")

        started = time.monotonic()
        own_deadline = started + self._overall_timeout
        deadline = own_deadline if deadline is None else min(own_deadline, deadline)
        result = EmbeddingBatchResult(
            total_chunks=len(texts),
            start_index=start_index,
            embedded_through=start_index - 1,
            dimension=expected_dimension,
        )
        log = logger.bind(job_id=job_id, provider=self._provider.get_provider_name())

        for batch_start in range(start_index, len(texts), self._batch_size):
            batch = texts[batch_start : batch_start + self._batch_size]
            batch_end = batch_start + len(batch) - 1

            left = remaining(deadline)
            if left is not None and left <= 0:
                result.stop_reason = STOP_OVERALL_TIMEOUT
                log.warning("embedding_overall_timeout", next_index=batch_start)
                break

            try:
                vectors = await with_deadline(
                    lambda batch=batch: self._provider.embed(batch),
                    timeout=self._batch_timeout,
                    operation="embedding_batch",
                    deadline=deadline,
                    retries=self._max_retries,
                    backoff=self._retry_backoff,
                    retry_on=_TRANSIENT_ERRORS,
                    provider_name=self._provider.get_provider_name(),
                )
            except DeadlineExceededError as exc:
                # A batch that only had the run's leftover budget ran out of overall time.
                overall_spent = (left is not None and left < self._batch_timeout) or (
                    (remaining(deadline) or 0.0) <= 0
                )
                result.stop_reason = STOP_OVERALL_TIMEOUT if overall_spent else STOP_BATCH_TIMEOUT
                result.last_error = str(exc)
                log.warning(
                    "embedding_batch_timed_out",
                    batch_start=batch_start,
                    batch_end=batch_end,
                    stop_reason=result.stop_reason,
                )
                break
            except Exception as exc:  # noqa: BLE001
                result.stop_reason = STOP_BATCH_ERROR
                result.last_error = str(exc)
                log.warning(
                    "embedding_batch_failed",
                    batch_start=batch_start,
                    batch_end=batch_end,
                    error=str(exc),
                )
                break

            problem = self._validate(vectors, len(batch), result.dimension)
            if problem is not None:
                result.stop_reason = STOP_INVALID_RESPONSE
                result.last_error = problem
                log.warning(
                    "embedding_batch_invalid",
                    batch_start=batch_start,
                    batch_end=batch_end,
                    problem=problem,
                )
                break

            if result.dimension is None:
                result.dimension = len(vectors[0])
            for offset, vector in enumerate(vectors):
                result.vectors[batch_start + offset] = vector
            result.embedded_through = batch_end
            result.batches_completed += 1
            log.debug("embedding_batch_done", batch_start=batch_start, batch_end=batch_end)

        result.elapsed_seconds = round(time.monotonic() - started, 3)
        log.info(
            "embedding_run_complete",
            total_chunks=result.total_chunks,
            chunks_embedded=result.chunks_embedded,
            fully_embedded=result.fully_embedded,
            batches_completed=result.batches_completed,
            stop_reason=result.stop_reason,
            elapsed_s=result.elapsed_seconds,
        )
        return result

    @staticmethod
    def _validate(vectors: list[list[float]], expected_count: int, dimension: int | None) -> str | None:
        """Return a description of what is wrong with a batch response, if anything."""
        if len(vectors) != expected_count:
            return f"expected {expected_count} vectors, got {len(vectors)}"
        dim = dimension if dimension is not None else (len(vectors[0]) if vectors else 0)
        if dim <= 0:
            return "empty embedding vector"
        for vector in vectors:
            if len(vector) != dim:
                return f"inconsistent vector length {len(vector)} (expected {dim})"
        return None
