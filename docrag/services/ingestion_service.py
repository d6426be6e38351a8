"""Orchestrator for the upload-to-index pipeline.

Pipeline stages: **register -> upload -> extract -> chunk -> embed -> write**.

The :class:`IngestionService` implements the **Orchestrator pattern**: it
coordinates the object store, extraction backend, chunker, embedding batch
processor and vector index writer without any of them knowing about each
other.  Every stage change goes through the :class:`JobStateMachine`, so the
job row is the single source of truth for how far a document got:

    1. register_upload  -- job row at ``registered`` + write-once upload URL
    2. store_upload / confirm_upload -- bytes present, job at ``uploaded``
    3. process_job      -- ``processing`` -> ``extracted`` -> ``indexed``
    4. resume_job       -- embed what a partial run left behind
    5. confirm_injected -- caller marks an indexed job as used

Extraction and embedding share one absolute deadline derived from the
pipeline ceiling, minus a reserve for the vector write, so a slow embedding
run stops on its own and the batches it finished are still written.

Failures before extraction completes fail the job.  Failures after it keep
the job at ``extracted`` with ``lastError`` set, because the extracted text
is still searchable through the legacy retriever.

All dependencies are injected via constructor, so backends can be swapped
(e.g. OpenAI -> Nomic embeddings) without changing this class.
"""

from __future__ import annotations

import re
import time
import uuid
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable

import structlog

from docrag.config.settings import Settings
from docrag.interfaces.extraction_provider import (
    ExtractionRequest,
    ExtractionResult,
    IExtractionProvider,
)
from docrag.interfaces.job_store_provider import IJobStore
from docrag.interfaces.object_store_provider import IObjectStoreProvider
from docrag.interfaces.vector_store_provider import IVectorStoreProvider
from docrag.models.job import (
    ExtractedContent,
    IngestionOutcome,
    IngestionResult,
    JobMetadata,
    JobStage,
    JobStatus,
    ProcessingJob,
    UploadTarget,
    stage_rank,
)
from docrag.services.chunker import TextChunker
from docrag.services.embedding_batcher import EmbeddingBatchProcessor
from docrag.services.index_writer import VectorIndexWriter
from docrag.services.job_state_machine import REOPENABLE_STAGES, JobStateMachine
from docrag.utils.deadlines import with_deadline
from docrag.utils.errors import (
    DeadlineExceededError,
    DocRAGError,
    InvalidStageTransitionError,
    InvalidUploadError,
    JobNotFoundError,
    UnsupportedFormatError,
    UploadNotFoundError,
    UploadTokenError,
)

logger = structlog.get_logger(logger_name=__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_NAME_LENGTH = 120

# Share of the pipeline ceiling (capped at one storage timeout) kept back for
# writing vectors once embedding stops.
_WRITE_RESERVE_FRACTION = 0.2


def safe_file_name(file_name: str) -> str:
    """Reduce *file_name* to a storage-key-safe basename."""
    base = PurePosixPath(file_name.replace("\\", "/")).name
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base).strip("._")
    return cleaned[:_MAX_NAME_LENGTH] or "upload"


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, UnsupportedFormatError):
        return f"Unsupported format: {exc.message}"
    if isinstance(exc, DeadlineExceededError):
        return f"Timed out: {exc.message}"
    if isinstance(exc, DocRAGError):
        return str(exc)
    return f"Unexpected error: {type(exc).__name__}: {exc}"


class IngestionService:
    """Drives a job from registration to a searchable index.

    Parameters
    ----------
    job_store:
        Persists jobs and extracted content.
    state_machine:
        Applies guarded stage transitions through *job_store*.
    object_store:
        Holds the raw uploaded bytes.
    extraction_provider:
        Turns stored bytes into plain text.
    chunker:
        Splits extracted text into overlapping windows.
    embedding_batcher:
        Embeds chunk texts under per-batch and overall deadlines.
    index_writer:
        Persists embedded chunks to the vector store.
    vector_store:
        Used directly only to drop a job's rows on deletion.
    max_upload_bytes:
        Largest accepted upload.
    extraction_timeout:
        Seconds allowed for extraction.
    storage_timeout:
        Seconds allowed per storage write.
    pipeline_timeout:
        Hard ceiling for one :meth:`process_job` run.
    """

    def __init__(
        self,
        job_store: IJobStore,
        state_machine: JobStateMachine,
        object_store: IObjectStoreProvider,
        extraction_provider: IExtractionProvider,
        chunker: TextChunker,
        embedding_batcher: EmbeddingBatchProcessor,
        index_writer: VectorIndexWriter,
        vector_store: IVectorStoreProvider,
        max_upload_bytes: int = 50 * 1024 * 1024,
        extraction_timeout: float = 120.0,
        storage_timeout: float = 15.0,
        pipeline_timeout: float = 330.0,
    ) -> None:
        self._jobs = job_store
        self._state = state_machine
        self._objects = object_store
        self._extractor = extraction_provider
        self._chunker = chunker
        self._batcher = embedding_batcher
        self._writer = index_writer
        self._vectors = vector_store
        self._max_upload_bytes = max_upload_bytes
        self._extraction_timeout = extraction_timeout
        self._storage_timeout = storage_timeout
        self._pipeline_timeout = pipeline_timeout

    @classmethod
    def from_settings(
        cls,
        job_store: IJobStore,
        state_machine: JobStateMachine,
        object_store: IObjectStoreProvider,
        extraction_provider: IExtractionProvider,
        chunker: TextChunker,
        embedding_batcher: EmbeddingBatchProcessor,
        index_writer: VectorIndexWriter,
        vector_store: IVectorStoreProvider,
        settings: Settings,
    ) -> IngestionService:
        return cls(
            job_store=job_store,
            state_machine=state_machine,
            object_store=object_store,
            extraction_provider=extraction_provider,
            chunker=chunker,
            embedding_batcher=embedding_batcher,
            index_writer=index_writer,
            vector_store=vector_store,
            max_upload_bytes=settings.max_upload_bytes,
            extraction_timeout=settings.extraction_timeout_seconds,
            storage_timeout=settings.storage_write_timeout_seconds,
            pipeline_timeout=settings.pipeline_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def register_upload(
        self,
        file_name: str,
        file_type: str,
        file_size: int,
        owner_id: str,
        analysis_target: str | None = None,
        attributes: dict[str, str] | None = None,
    ) -> tuple[ProcessingJob, UploadTarget]:
        """Create a ``registered`` job and a write-once upload target for it.

        Raises
        ------
        InvalidUploadError
            For an empty file name, a missing owner, or a size outside
            ``(0, max_upload_bytes]``.
        """
        if not file_name or not file_name.strip():
            raise InvalidUploadError("fileName must not be empty")
        if not owner_id or not owner_id.strip():
            raise InvalidUploadError("ownerId must not be empty")
        if file_size <= 0:
            raise InvalidUploadError("fileSize must be positive")
        if file_size > self._max_upload_bytes:
            raise InvalidUploadError(
                f"fileSize {file_size} exceeds the {self._max_upload_bytes} byte limit"
            )

        job_id = str(uuid.uuid4())
        storage_key = f"incoming/{uuid.uuid4()}-{safe_file_name(file_name)}"
        metadata = JobMetadata(analysis_target=analysis_target, attributes=attributes or {})
        job = ProcessingJob(
            id=job_id,
            owner_id=owner_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            storage_key=storage_key,
            metadata=metadata,
        )
        job = await with_deadline(
            lambda: self._jobs.create_job(job),
            timeout=self._storage_timeout,
            operation="create_job",
            provider_name=self._jobs.get_provider_name(),
        )
        target = self._objects.create_upload_target(storage_key, job_id)
        logger.info(
            "upload_registered",
            job_id=job_id,
            owner_id=owner_id,
            file_type=file_type,
            file_size=file_size,
        )
        return job, target

    async def store_upload(self, job_id: str, data: bytes, token: str) -> ProcessingJob:
        """Write the raw bytes for a ``registered`` job and confirm the upload.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        UploadTokenError
            If *token* does not authorise writing this job's storage key.
        InvalidUploadError
            If the body is empty or larger than the limit.
        InvalidStageTransitionError
            If the job already has its bytes.
        StorageError
            If the object already exists (uploads are write-once).
        """
        job = await self._require_job(job_id)
        if not self._objects.verify_upload_token(job.storage_key, token):
            raise UploadTokenError(provider_name=self._objects.get_provider_name())
        if job.stage is not JobStage.REGISTERED:
            raise InvalidStageTransitionError(
                f"Job {job_id} is at '{job.stage.value}'; its upload is closed"
            )
        if not data:
            raise InvalidUploadError("Upload body is empty")
        if len(data) > self._max_upload_bytes:
            raise InvalidUploadError(
                f"Upload of {len(data)} bytes exceeds the {self._max_upload_bytes} byte limit"
            )

        await with_deadline(
            lambda: self._objects.put(job.storage_key, data),
            timeout=self._storage_timeout,
            operation="object_put",
            provider_name=self._objects.get_provider_name(),
        )
        logger.info("upload_stored", job_id=job_id, size=len(data))
        return await self.confirm_upload(job_id)

    async def confirm_upload(self, job_id: str) -> ProcessingJob:
        """Advance a job to ``uploaded`` once its bytes are in the object store.

        Confirming a job that is already past ``registered`` returns it
        unchanged.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        UploadNotFoundError
            If the bytes are not in the object store.
        """
        job = await self._require_job(job_id)
        if job.stage is not JobStage.REGISTERED:
            return job
        exists = await with_deadline(
            lambda: self._objects.exists(job.storage_key),
            timeout=self._storage_timeout,
            operation="object_exists",
            provider_name=self._objects.get_provider_name(),
        )
        if not exists:
            raise UploadNotFoundError(
                f"No uploaded bytes for job {job_id}",
                provider_name=self._objects.get_provider_name(),
            )
        return await self._state.advance(job_id, JobStage.UPLOADED)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_job(self, job_id: str) -> IngestionResult:
        """Run extraction, chunking, embedding and indexing for *job_id*.

        Safe to invoke more than once: a job already past ``uploaded`` (or
        claimed by a concurrent run) is reported as ``skipped``.

        Returns
        -------
        IngestionResult
            Final stage, status, outcome and chunk counts of the run.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        UploadNotFoundError
            If a ``registered`` job has no bytes in the object store.
        """
        started = time.monotonic()
        job = await self._require_job(job_id)

        if stage_rank(job.stage) > stage_rank(JobStage.UPLOADED) or job.stage is JobStage.FAILED:
            logger.info("process_skipped", job_id=job_id, stage=job.stage.value)
            return self._result(job, started, outcome=IngestionOutcome.SKIPPED)
        if job.stage is JobStage.REGISTERED:
            job = await self.confirm_upload(job_id)

        try:
            job = await self._state.advance(
                job_id, JobStage.PROCESSING, expected_stage=JobStage.UPLOADED
            )
        except InvalidStageTransitionError:
            current = await self._require_job(job_id)
            logger.info("process_already_claimed", job_id=job_id, stage=current.stage.value)
            return self._result(current, started, outcome=IngestionOutcome.SKIPPED)

        logger.info("pipeline_started", job_id=job_id, file_type=job.file_type)
        pipeline_deadline = started + self._pipeline_timeout
        return await self._run_guarded(
            job_id,
            started,
            "ingestion_pipeline",
            lambda: self._run_pipeline(job, started, pipeline_deadline),
        )

    async def resume_job(self, job_id: str) -> IngestionResult:
        """Embed and write the chunks a previous run left unindexed.

        Only a completed job at ``extracted`` or ``indexed`` whose
        ``fullyEmbedded`` is false can be resumed.  Embedding restarts after
        the contiguous prefix of chunk indices already in the vector store,
        with the vector length recorded by the earlier run.  Anything else,
        including a job another worker is already resuming, is ``skipped``.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        """
        started = time.monotonic()
        job = await self._require_job(job_id)
        try:
            job = await self._state.reopen(job_id)
        except InvalidStageTransitionError as exc:
            logger.info("resume_skipped", job_id=job_id, stage=job.stage.value, reason=str(exc))
            return self._result(job, started, outcome=IngestionOutcome.SKIPPED)

        logger.info("resume_started", job_id=job_id, stage=job.stage.value)
        pipeline_deadline = started + self._pipeline_timeout
        return await self._run_guarded(
            job_id,
            started,
            "ingestion_resume",
            lambda: self._run_resume(job, started, pipeline_deadline),
        )

    async def _run_guarded(
        self,
        job_id: str,
        started: float,
        operation: str,
        run: Callable[[], Awaitable[IngestionResult]],
    ) -> IngestionResult:
        """Run *run* under the pipeline ceiling and settle the job if it dies.

        The ceiling is reported as a result.  Any other escaping error is
        re-raised after the job has been settled, so no job is left at
        ``processing`` status.
        """
        try:
            return await with_deadline(run, timeout=self._pipeline_timeout, operation=operation)
        except DeadlineExceededError as exc:
            return await self._settle_interrupted(job_id, exc, started)
        except Exception as exc:
            logger.exception("pipeline_crashed", job_id=job_id, error_type=type(exc).__name__)
            try:
                await self._settle_interrupted(job_id, exc, started)
            except Exception as settle_exc:  # noqa: BLE001
                logger.error("pipeline_settle_failed", job_id=job_id, error=str(settle_exc))
            raise

    def _work_deadline(self, pipeline_deadline: float) -> float:
        """Deadline for extraction and embedding, leaving time to write vectors."""
        reserve = min(self._storage_timeout, self._pipeline_timeout * _WRITE_RESERVE_FRACTION)
        return pipeline_deadline - reserve

    async def _run_pipeline(
        self, job: ProcessingJob, started: float, pipeline_deadline: float
    ) -> IngestionResult:
        log = logger.bind(job_id=job.id)
        work_deadline = self._work_deadline(pipeline_deadline)

        # -- Extraction: any failure here fails the job --------------------
        try:
            extraction = await self._extract(job, work_deadline)
        except Exception as exc:  # noqa: BLE001
            log.warning("extraction_failed", error=str(exc), error_type=type(exc).__name__)
            failed = await self._state.mark_failed(job.id, _failure_reason(exc))
            return self._result(failed, started)

        job = await self._state.advance(
            job.id,
            JobStage.EXTRACTED,
            {
                "extracted_chars": len(extraction.text),
                "extraction_provider": extraction.provider_name,
                "truncated": extraction.truncated,
            },
        )
        log.info(
            "extraction_complete",
            chars=len(extraction.text),
            provider=extraction.provider_name,
            truncated=extraction.truncated,
        )
        return await self._index(job, extraction.text, started, work_deadline)

    async def _run_resume(
        self, job: ProcessingJob, started: float, pipeline_deadline: float
    ) -> IngestionResult:
        content = await with_deadline(
            lambda: self._jobs.get_extracted_content(job.id),
            timeout=self._storage_timeout,
            operation="load_extracted_content",
            provider_name=self._jobs.get_provider_name(),
        )
        if content is None:
            settled = await self._state.advance(
                job.id,
                job.stage,
                {"last_error": "No extracted content to resume from"},
                status=JobStatus.COMPLETED,
            )
            return self._result(settled, started)
        stored = await with_deadline(
            lambda: self._vectors.get_chunk_indices(job.id),
            timeout=self._storage_timeout,
            operation="vector_chunk_indices",
            provider_name=self._vectors.get_provider_name(),
        )
        return await self._index(
            job,
            content.text,
            started,
            self._work_deadline(pipeline_deadline),
            stored=stored,
        )

    async def _index(
        self,
        job: ProcessingJob,
        text: str,
        started: float,
        deadline: float,
        stored: set[int] | None = None,
    ) -> IngestionResult:
        """Chunk, embed and write *text*; failures keep the job's current stage.

        *stored* holds chunk indices already in the vector store; embedding
        starts after their contiguous prefix.
        """
        log = logger.bind(job_id=job.id)
        stored = stored or set()
        try:
            chunks = self._chunker.split(text)
            start_index = 0
            while start_index in stored and start_index < len(chunks):
                start_index += 1
            await self._state.annotate(job.id, {"chunks_total": len(chunks)})
            embedded = await self._batcher.embed_chunks(
                [chunk.text for chunk in chunks],
                start_index=start_index,
                expected_dimension=job.metadata.embedding_dimension if stored else None,
                job_id=job.id,
                deadline=deadline,
            )
            await self._state.annotate(
                job.id,
                {
                    "chunks_embedded": embedded.chunks_embedded,
                    "embedded_through": embedded.embedded_through,
                    "embedding_dimension": embedded.dimension,
                    "embedding_stop_reason": embedded.stop_reason,
                },
            )
            written = await self._writer.write(job.id, chunks, embedded.vectors)
        except Exception as exc:  # noqa: BLE001
            log.exception("indexing_failed", error=str(exc))
            settled = await self._state.advance(
                job.id,
                job.stage,
                {"fully_embedded": False, "last_error": _failure_reason(exc)},
                status=JobStatus.COMPLETED,
            )
            return self._result(settled, started)

        present = (stored & set(range(len(chunks)))) | (
            set(embedded.vectors) - set(written.failed_indices)
        )
        patch: dict[str, Any] = {
            "chunks_total": len(chunks),
            "chunks_embedded": embedded.chunks_embedded,
            "fully_embedded": embedded.fully_embedded and written.failed == 0,
            "embedded_through": embedded.embedded_through,
            "embedding_stop_reason": embedded.stop_reason,
            "chunks_written": len(present),
            "chunks_write_failed": written.failed,
            "last_error": embedded.last_error,
        }
        # No rows at all: the text stays searchable through the legacy path.
        next_stage = JobStage.INDEXED if not chunks or present else job.stage
        final = await self._state.advance(job.id, next_stage, patch, status=JobStatus.COMPLETED)

        result = self._result(final, started)
        log.info(
            "pipeline_complete",
            stage=final.stage.value,
            outcome=result.outcome.value,
            chunks_total=len(chunks),
            start_index=start_index,
            chunks_embedded=embedded.chunks_embedded,
            chunks_written=written.written,
            stop_reason=embedded.stop_reason,
            elapsed_s=round(result.elapsed_seconds, 3),
        )
        return result

    async def _extract(self, job: ProcessingJob, deadline: float | None = None) -> ExtractionResult:
        request = ExtractionRequest(
            storage_key=job.storage_key,
            file_name=job.file_name,
            file_type=job.file_type,
            analysis_target=job.metadata.analysis_target,
        )
        extraction = await with_deadline(
            lambda: self._extractor.extract(request),
            timeout=self._extraction_timeout,
            operation="extraction",
            deadline=deadline,
            provider_name=self._extractor.get_provider_name(),
        )
        content = ExtractedContent(
            job_id=job.id,
            text=extraction.text,
            structured=extraction.structured,
        )
        await with_deadline(
            lambda: self._jobs.save_extracted_content(content),
            timeout=self._storage_timeout,
            operation="save_extracted_content",
            provider_name=self._jobs.get_provider_name(),
        )
        return extraction

    async def _settle_interrupted(
        self, job_id: str, exc: BaseException, started: float
    ) -> IngestionResult:
        """Record where a run was when the ceiling or an unexpected error stopped it.

        A job still at ``processing`` has no extracted text and fails.  A job
        past extraction whose status is still ``processing`` keeps its stage,
        is marked completed and not fully embedded, and keeps the embedding
        progress noted before the write.  Jobs the run already settled are
        left alone.
        """
        job = await self._require_job(job_id)
        logger.warning(
            "pipeline_interrupted",
            job_id=job_id,
            stage=job.stage.value,
            reason=_failure_reason(exc),
        )
        if job.stage is JobStage.PROCESSING:
            job = await self._state.mark_failed(job_id, _failure_reason(exc))
        elif job.stage in REOPENABLE_STAGES and job.status is JobStatus.PROCESSING:
            job = await self._state.advance(
                job_id,
                job.stage,
                {
                    "chunks_embedded": job.metadata.chunks_embedded or 0,
                    "fully_embedded": False,
                    "last_error": _failure_reason(exc),
                },
                status=JobStatus.COMPLETED,
            )
        return self._result(job, started)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def confirm_injected(self, job_id: str) -> ProcessingJob:
        """Mark an ``indexed`` job as injected into a downstream context.

        Idempotent for a job that is already ``injected``.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        InvalidStageTransitionError
            If the job is at any stage other than ``indexed`` or ``injected``.
        """
        job = await self._require_job(job_id)
        if job.stage is JobStage.INJECTED:
            return job
        return await self._state.advance(
            job_id, JobStage.INJECTED, expected_stage=JobStage.INDEXED
        )

    async def get_status(self, job_id: str) -> ProcessingJob:
        """Return the current job; its ``outcome`` property summarises the run."""
        return await self._require_job(job_id)

    async def delete_job(self, job_id: str) -> None:
        """Remove a job's vector rows, raw bytes, extracted content and row.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        """
        job = await self._require_job(job_id)
        removed_rows = await with_deadline(
            lambda: self._vectors.delete_by_job(job_id),
            timeout=self._storage_timeout,
            operation="vector_delete",
            provider_name=self._vectors.get_provider_name(),
        )
        await with_deadline(
            lambda: self._objects.delete(job.storage_key),
            timeout=self._storage_timeout,
            operation="object_delete",
            provider_name=self._objects.get_provider_name(),
        )
        await self._jobs.delete_job(job_id)
        logger.info("job_deleted", job_id=job_id, vector_rows=removed_rows)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_job(self, job_id: str) -> ProcessingJob:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _result(
        job: ProcessingJob,
        started: float,
        outcome: IngestionOutcome | None = None,
    ) -> IngestionResult:
        meta = job.metadata
        return IngestionResult(
            job_id=job.id,
            stage=job.stage,
            status=job.status,
            outcome=outcome or job.outcome,
            chunks_total=meta.chunks_total or 0,
            chunks_embedded=meta.chunks_embedded or 0,
            fully_embedded=bool(meta.fully_embedded),
            chunks_write_failed=meta.chunks_write_failed or 0,
            failure_reason=meta.failure_reason,
            elapsed_seconds=time.monotonic() - started,
        )
