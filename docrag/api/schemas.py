"""Pydantic request/response schemas for the docrag API.

Defines the public contract for the upload, job lifecycle, retrieval and
health endpoints.  Every schema serialises with camelCase keys
(``jobId``, ``fileName``, ...) and accepts either camelCase or snake_case
on input.

Convention: request schemas end with "Request", response schemas end with
"Response".  The retrieval endpoint returns
:class:`~docrag.models.rag.RetrievalResult` directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docrag.models.job import (
    IngestionOutcome,
    IngestionResult,
    JobStage,
    JobStatus,
    ProcessingJob,
    UploadTarget,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


class UploadRegistrationRequest(_CamelModel):
    """Declares a file before its bytes are sent."""

    file_name: str = Field(..., min_length=1, max_length=512)
    file_type: str = Field(..., min_length=1, max_length=255, description="MIME type or extension.")
    file_size: int = Field(..., gt=0)
    owner_id: str = Field(..., min_length=1, max_length=255)
    analysis_target: str | None = Field(default=None, max_length=255)
    attributes: dict[str, str] = Field(default_factory=dict)


class UploadRegistrationResponse(_CamelModel):
    """Where and how to send the file's bytes."""

    job_id: str
    storage_key: str
    upload_url: str
    upload_token: str
    expires_at: datetime
    message: str = "Upload the file bytes with PUT to uploadUrl before expiresAt."

    @classmethod
    def from_target(cls, job: ProcessingJob, target: UploadTarget) -> UploadRegistrationResponse:
        return cls(
            job_id=job.id,
            storage_key=target.storage_key,
            upload_url=target.upload_url,
            upload_token=target.upload_token,
            expires_at=target.expires_at,
        )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobStatusResponse(_CamelModel):
    """Public view of one processing job."""

    job_id: str
    owner_id: str
    file_name: str
    file_type: str
    file_size: int
    status: JobStatus
    stage: JobStage
    outcome: IngestionOutcome
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: ProcessingJob) -> JobStatusResponse:
        return cls(
            job_id=job.id,
            owner_id=job.owner_id,
            file_name=job.file_name,
            file_type=job.file_type,
            file_size=job.file_size,
            status=job.status,
            stage=job.stage,
            outcome=job.outcome,
            metadata=job.metadata.to_public(),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class IngestionResultResponse(_CamelModel):
    """Outcome of a synchronous (``wait=true``) processing run."""

    job_id: str
    stage: JobStage
    status: JobStatus
    outcome: IngestionOutcome
    chunks_total: int
    chunks_embedded: int
    fully_embedded: bool
    chunks_write_failed: int
    failure_reason: str | None = None
    elapsed_seconds: float

    @classmethod
    def from_result(cls, result: IngestionResult) -> IngestionResultResponse:
        return cls(**result.model_dump())


class ProcessAcceptedResponse(_CamelModel):
    """Returned with 202 when processing was scheduled in the background."""

    job_id: str
    stage: JobStage
    message: str = "Processing scheduled; poll the job for progress."


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class RetrievalQueryRequest(_CamelModel):
    """A natural-language query over one owner's or a set of jobs."""

    query: str = Field(..., min_length=1, max_length=4000)
    job_ids: list[str] = Field(default_factory=list)
    owner_id: str | None = None
    top_k: int | None = Field(default=None, ge=1)
    similarity_floor: float | None = Field(default=None, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Health / errors
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
