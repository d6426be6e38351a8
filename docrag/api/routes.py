"""FastAPI API routes for docrag.

Provides REST endpoints for upload registration, raw upload, job lifecycle
(confirm, process, injected, status, delete), retrieval and health.  Service
dependencies are resolved from ``app.state`` via FastAPI's ``Depends``
using the ``Annotated`` pattern.

    Endpoint                              Method  Description
    /api/v1/uploads                       POST    Register a file, get an upload URL
    /api/v1/uploads/{jid}/content         PUT     Write-once raw bytes (token-checked)
    /api/v1/jobs/{jid}/uploaded           POST    Confirm bytes reached the store
    /api/v1/jobs/{jid}/process            POST    Run the pipeline (?wait=true to block)
    /api/v1/jobs/{jid}/resume             POST    Embed what a partial run left behind
    /api/v1/jobs/{jid}/injected           POST    Mark an indexed job as used
    /api/v1/jobs/{jid}                    GET     Job status with outcome
    /api/v1/jobs/{jid}                    DELETE  Remove job, bytes and vectors
    /api/v1/retrieval/query               POST    Ranked chunks for a query
    /api/v1/health                        GET     Provider availability

Domain errors raised by the services are turned into JSON responses by
``ErrorHandlingMiddleware``.
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from docrag import __version__
from docrag.api.schemas import (
    ErrorResponse,
    HealthResponse,
    IngestionResultResponse,
    JobStatusResponse,
    ProcessAcceptedResponse,
    RetrievalQueryRequest,
    UploadRegistrationRequest,
    UploadRegistrationResponse,
)
from docrag.config.settings import Settings
from docrag.models.rag import RetrievalResult
from docrag.services.ingestion_service import IngestionService
from docrag.services.retrieval_service import RetrievalService
from docrag.utils.errors import DocRAGError
from docrag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

# Raw uploads are read in 64 KB increments so oversized bodies are rejected
# before they are fully buffered.
_UPLOAD_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def _get_retrieval_service(request: Request) -> RetrievalService:
    return request.app.state.retrieval_service


SettingsDep = Annotated[Settings, Depends(_get_settings)]
IngestionDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
RetrievalDep = Annotated[RetrievalService, Depends(_get_retrieval_service)]


async def _process_in_background(service: IngestionService, job_id: str, resume: bool = False) -> None:
    """Run the pipeline after the response is sent; errors land in the log.

    The service has already settled the job by the time an error reaches
    here, so nothing is re-raised into the server.
    """
    try:
        if resume:
            await service.resume_job(job_id)
        else:
            await service.process_job(job_id)
    except DocRAGError as exc:
        _logger.error(
            "background_process_failed",
            job_id=job_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
    except Exception as exc:  # noqa: BLE001
        _logger.exception(
            "background_process_crashed",
            job_id=job_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


@router.post(
    "/uploads",
    status_code=201,
    response_model=UploadRegistrationResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Register a file and obtain a write-once upload URL",
)
async def register_upload(
    body: UploadRegistrationRequest,
    service: IngestionDep,
) -> UploadRegistrationResponse:
    job, target = await service.register_upload(
        file_name=body.file_name,
        file_type=body.file_type,
        file_size=body.file_size,
        owner_id=body.owner_id,
        analysis_target=body.analysis_target,
        attributes=body.attributes,
    )
    return UploadRegistrationResponse.from_target(job, target)


@router.put(
    "/uploads/{job_id}/content",
    status_code=204,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
    summary="Upload the raw bytes of a registered file",
)
async def upload_content(
    job_id: str,
    request: Request,
    service: IngestionDep,
    app_settings: SettingsDep,
    token: Annotated[str, Query(min_length=1)],
) -> Response:
    """Accept the body as the file's bytes, then confirm the upload."""
    limit = app_settings.max_upload_bytes
    parts: list[bytes] = []
    total_size = 0
    async for part in request.stream():
        if not part:
            continue
        total_size += len(part)
        if total_size > limit:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: more than {limit} bytes.",
            )
        parts.append(part)
    data = b"".join(parts)
    del parts

    await service.store_upload(job_id, data, token)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@router.post(
    "/jobs/{job_id}/uploaded",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Confirm that a job's bytes reached the object store",
)
async def confirm_upload(job_id: str, service: IngestionDep) -> JobStatusResponse:
    job = await service.confirm_upload(job_id)
    return JobStatusResponse.from_job(job)


@router.post(
    "/jobs/{job_id}/process",
    responses={
        200: {"model": IngestionResultResponse},
        202: {"model": ProcessAcceptedResponse},
        404: {"model": ErrorResponse},
    },
    summary="Run extraction, chunking, embedding and indexing for a job",
)
async def process_job(
    job_id: str,
    service: IngestionDep,
    background_tasks: BackgroundTasks,
    wait: bool = False,
) -> JSONResponse:
    """Trigger processing; safe to call repeatedly.

    The upload is confirmed synchronously so a missing job or missing bytes
    is reported to the caller.  Without ``wait`` the pipeline runs as a
    background task and 202 is returned.
    """
    job = await service.confirm_upload(job_id)

    if wait:
        result = await service.process_job(job_id)
        body = IngestionResultResponse.from_result(result)
        return JSONResponse(status_code=200, content=body.model_dump(mode="json", by_alias=True))

    background_tasks.add_task(_process_in_background, service, job_id)
    accepted = ProcessAcceptedResponse(job_id=job.id, stage=job.stage)
    return JSONResponse(status_code=202, content=accepted.model_dump(mode="json", by_alias=True))


@router.post(
    "/jobs/{job_id}/resume",
    responses={
        200: {"model": IngestionResultResponse},
        202: {"model": ProcessAcceptedResponse},
        404: {"model": ErrorResponse},
    },
    summary="Embed the chunks a partial run left unindexed",
)
async def resume_job(
    job_id: str,
    service: IngestionDep,
    background_tasks: BackgroundTasks,
    wait: bool = False,
) -> JSONResponse:
    """Resume a partially embedded job; anything else reports ``skipped``."""
    job = await service.get_status(job_id)

    if wait:
        result = await service.resume_job(job_id)
        body = IngestionResultResponse.from_result(result)
        return JSONResponse(status_code=200, content=body.model_dump(mode="json", by_alias=True))

    background_tasks.add_task(_process_in_background, service, job_id, resume=True)
    accepted = ProcessAcceptedResponse(job_id=job.id, stage=job.stage)
    return JSONResponse(status_code=202, content=accepted.model_dump(mode="json", by_alias=True))


@router.post(
    "/jobs/{job_id}/injected",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Mark an indexed job as injected into a downstream context",
)
async def confirm_injected(job_id: str, service: IngestionDep) -> JobStatusResponse:
    job = await service.confirm_injected(job_id)
    return JobStatusResponse.from_job(job)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Job status, stage, outcome and metadata",
)
async def get_job(job_id: str, service: IngestionDep) -> JobStatusResponse:
    job = await service.get_status(job_id)
    return JobStatusResponse.from_job(job)


@router.delete(
    "/jobs/{job_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a job with its raw bytes, extracted text and vectors",
)
async def delete_job(job_id: str, service: IngestionDep) -> Response:
    await service.delete_job(job_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@router.post(
    "/retrieval/query",
    response_model=RetrievalResult,
    summary="Retrieve the most relevant chunks for a query",
)
async def retrieval_query(
    body: RetrievalQueryRequest,
    service: RetrievalDep,
) -> RetrievalResult:
    return await service.retrieve(
        query=body.query,
        job_ids=body.job_ids or None,
        owner_id=body.owner_id,
        top_k=body.top_k,
        similarity_floor=body.similarity_floor,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Report provider availability.

    ``healthy`` when every provider is up, ``degraded`` when the job store is
    up but vector search is not (queries still answer from extracted text),
    ``unhealthy`` otherwise.
    """
    state = request.app.state
    providers: dict[str, Any] = {}
    for key in ("job_store", "vector_store", "embedding_provider", "extraction_provider"):
        provider = getattr(state, key, None)
        if provider is None:
            providers[key] = False
            continue
        try:
            providers[key] = bool(provider.is_available())
        except Exception:  # noqa: BLE001
            providers[key] = False

    if all(providers.values()):
        status = "healthy"
    elif providers["job_store"]:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(status=status, version=__version__, providers=providers)
