"""Job lifecycle models for the docrag ingestion pipeline.

Defines Pydantic v2 models for processing jobs, their structured metadata,
extracted content and upload targets.  All models are frozen: a stage change
produces a new :class:`ProcessingJob` via ``model_copy(update={...})`` inside
the job store's transaction (see :mod:`docrag.services.job_state_machine`).

Stage order::

    registered -> uploaded -> processing -> extracted -> indexed -> injected

``failed`` sits outside the order and is reachable from every non-terminal
stage.  ``injected`` and ``failed`` are terminal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

METADATA_SCHEMA_VERSION = 1
STAGE_HISTORY_LIMIT = 25


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class JobStage(str, Enum):  # noqa: UP042
    """Fine-grained position of a job in its lifecycle."""

    REGISTERED = "registered"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    INDEXED = "indexed"
    INJECTED = "injected"
    FAILED = "failed"


class JobStatus(str, Enum):  # noqa: UP042
    """Coarse status shown to polling clients."""

    REGISTERED = "registered"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionOutcome(str, Enum):  # noqa: UP042
    """How a pipeline run (or the job as seen by a poller) ended up."""

    PROCESSING = "processing"
    COMPLETE = "complete"      # every chunk embedded
    PARTIAL = "partial"        # completed, some content could not be indexed
    FAILED = "failed"
    SKIPPED = "skipped"        # trigger arrived for a job already past uploaded


class AnalysisTarget(str, Enum):  # noqa: UP042
    """What the caller wants extracted from an upload.

    Stored as free text on the job so an unknown target can be reported when
    the job is processed; tabular files ignore it.
    """

    DOCUMENT_ANALYSIS = "document-analysis"   # text layer, default
    IMAGE_OCR = "image-ocr"                   # OCR, including rendered PDF pages


STAGE_ORDER: tuple[JobStage, ...] = (
    JobStage.REGISTERED,
    JobStage.UPLOADED,
    JobStage.PROCESSING,
    JobStage.EXTRACTED,
    JobStage.INDEXED,
    JobStage.INJECTED,
)

TERMINAL_STAGES: frozenset[JobStage] = frozenset({JobStage.INJECTED, JobStage.FAILED})

QUERYABLE_STAGES: frozenset[JobStage] = frozenset(
    {JobStage.EXTRACTED, JobStage.INDEXED, JobStage.INJECTED}
)

# ``None`` means the stage leaves the current status untouched.
STAGE_TO_STATUS: dict[JobStage, JobStatus | None] = {
    JobStage.REGISTERED: JobStatus.REGISTERED,
    JobStage.UPLOADED: JobStatus.UPLOADED,
    JobStage.PROCESSING: JobStatus.PROCESSING,
    JobStage.EXTRACTED: None,
    JobStage.INDEXED: JobStatus.COMPLETED,
    JobStage.INJECTED: JobStatus.COMPLETED,
    JobStage.FAILED: JobStatus.FAILED,
}


def stage_rank(stage: JobStage) -> int:
    """Position of *stage* in :data:`STAGE_ORDER`; ``failed`` ranks last."""
    if stage is JobStage.FAILED:
        return len(STAGE_ORDER)
    return STAGE_ORDER.index(stage)


# ---------------------------------------------------------------------------
# JobMetadata -- the structured replacement for a free-form metadata blob.
# ---------------------------------------------------------------------------
class StageHistoryEntry(BaseModel):
    """One observed stage and when the job entered it."""

    model_config = ConfigDict(frozen=True)

    stage: JobStage
    at: datetime


class JobMetadata(BaseModel):
    """Progress counters and error detail for a job.

    Serialized with camelCase keys (``chunksTotal``, ``chunksEmbedded``,
    ``fullyEmbedded``, ``failureReason`` ...).  Unknown keys are rejected so
    partial-success reporting stays testable.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    schema_version: int = METADATA_SCHEMA_VERSION

    # --- chunking / embedding progress ---
    chunks_total: int | None = Field(default=None, ge=0)
    chunks_embedded: int | None = Field(default=None, ge=0)
    fully_embedded: bool | None = None
    embedded_through: int | None = Field(
        default=None, ge=-1, description="Last contiguous embedded chunk index; -1 for none."
    )
    embedding_stop_reason: str | None = None
    embedding_dimension: int | None = Field(default=None, ge=1)
    chunks_written: int | None = Field(default=None, ge=0)
    chunks_write_failed: int | None = Field(default=None, ge=0)

    # --- extraction ---
    extracted_chars: int | None = Field(default=None, ge=0)
    extraction_provider: str | None = None
    truncated: bool | None = None

    # --- errors ---
    failure_reason: str | None = None
    last_error: str | None = None

    # --- lifecycle bookkeeping ---
    uploaded_at: datetime | None = None
    stage_updated_at: datetime | None = None
    stage_history: list[StageHistoryEntry] = Field(default_factory=list)

    # --- caller-supplied at registration ---
    analysis_target: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)

    def merged(self, patch: dict[str, Any] | None) -> JobMetadata:
        """Return a copy with *patch* applied.

        *patch* may use snake_case or camelCase keys; it is validated on its
        own first so an unknown key raises before anything is merged.
        """
        if not patch:
            return self
        updates = JobMetadata.model_validate(patch).model_dump(exclude_unset=True)
        return JobMetadata.model_validate({**self.model_dump(), **updates})

    def with_stage(self, stage: JobStage, at: datetime) -> JobMetadata:
        """Record entry into *stage*; repeated stages are not duplicated."""
        history = list(self.stage_history)
        if not history or history[-1].stage is not stage:
            history.append(StageHistoryEntry(stage=stage, at=at))
        history = history[-STAGE_HISTORY_LIMIT:]
        update: dict[str, Any] = {
            "stage_history": [entry.model_dump() for entry in history],
            "stage_updated_at": at,
        }
        if stage is JobStage.UPLOADED and self.uploaded_at is None:
            update["uploaded_at"] = at
        return JobMetadata.model_validate({**self.model_dump(), **update})

    def to_public(self) -> dict[str, Any]:
        """camelCase JSON-ready dict, omitting unset counters."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# ProcessingJob -- one per uploaded artifact.
# ---------------------------------------------------------------------------
class ProcessingJob(BaseModel):
    """A persisted job record.

    Mutated only through the job store's guarded update, which the
    :class:`~docrag.services.job_state_machine.JobStateMachine` drives.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    file_name: str
    file_type: str
    file_size: int = Field(ge=0)
    # Object-store key of the raw upload, e.g. "incoming/<uuid>-report.pdf".
    storage_key: str
    status: JobStatus = JobStatus.REGISTERED
    stage: JobStage = JobStage.REGISTERED
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def is_queryable_stage(self) -> bool:
        return self.stage in QUERYABLE_STAGES

    @property
    def outcome(self) -> IngestionOutcome:
        """Distinguish full success from "completed with partial results"."""
        if self.stage is JobStage.FAILED:
            return IngestionOutcome.FAILED
        if self.status is not JobStatus.COMPLETED:
            return IngestionOutcome.PROCESSING
        if self.metadata.fully_embedded is False:
            return IngestionOutcome.PARTIAL
        return IngestionOutcome.COMPLETE


class ExtractedContent(BaseModel):
    """Raw text (and optional structure) returned by the extraction backend."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    text: str
    structured: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)


class UploadTarget(BaseModel):
    """A write-once destination for the raw bytes of a registered job."""

    model_config = ConfigDict(frozen=True)

    storage_key: str
    upload_url: str
    upload_token: str
    expires_at: datetime


class IngestionResult(BaseModel):
    """Summary of one pipeline invocation for a job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    stage: JobStage
    status: JobStatus
    outcome: IngestionOutcome
    chunks_total: int = 0
    chunks_embedded: int = 0
    fully_embedded: bool = False
    chunks_write_failed: int = 0
    failure_reason: str | None = None
    elapsed_seconds: float = 0.0
