"""Guarded stage transitions for processing jobs.

Every stage change is computed by one of three pure functions,
:func:`plan_transition`, :func:`plan_failure` and :func:`plan_reopen`, and
applied by the job store inside a single transaction.  The guard enforces:

- stages only move forward along ``STAGE_ORDER`` (re-entering the current
  stage only merges metadata);
- ``failed`` is reachable from any non-terminal stage and is never left;
- ``injected`` is terminal success; failing it is a no-op;
- a partially embedded job can be reopened (status only) for a resume run.

The coarse ``status`` follows the stage (see ``STAGE_TO_STATUS``) unless
the caller overrides it, which the orchestrator does when a run ends at
``extracted`` with partial results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from docrag.interfaces.job_store_provider import IJobStore
from docrag.models.job import (
    STAGE_TO_STATUS,
    TERMINAL_STAGES,
    JobStage,
    JobStatus,
    ProcessingJob,
    stage_rank,
    utcnow,
)
from docrag.utils.errors import InvalidStageTransitionError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Pure guards
# ---------------------------------------------------------------------------

def plan_transition(
    job: ProcessingJob,
    next_stage: JobStage,
    metadata_patch: dict[str, Any] | None = None,
    status: JobStatus | None = None,
    now: datetime | None = None,
    expected_stage: JobStage | None = None,
) -> ProcessingJob:
    """Return *job* moved to *next_stage*, or raise if the move is illegal.

    When *expected_stage* is given the move only applies if the job is
    currently at that stage, which lets two workers race for the same job
    and have exactly one of them win.

    Raises
    ------
    InvalidStageTransitionError
        For a backward move, a move out of ``failed``, a move to ``failed``
        (use :func:`plan_failure`), or a stage other than *expected_stage*.
    """
    if expected_stage is not None and job.stage is not expected_stage:
        raise InvalidStageTransitionError(
            f"Job {job.id} is at '{job.stage.value}', expected '{expected_stage.value}'"
        )
    if next_stage is JobStage.FAILED:
        raise InvalidStageTransitionError(
            f"Job {job.id}: use mark_failed to move a job to 'failed'"
        )
    if job.stage is JobStage.FAILED:
        raise InvalidStageTransitionError(
            f"Job {job.id} is failed; cannot move to '{next_stage.value}'"
        )
    if stage_rank(next_stage) < stage_rank(job.stage):
        raise InvalidStageTransitionError(
            f"Job {job.id} cannot move backward from '{job.stage.value}' to '{next_stage.value}'"
        )

    now = now or utcnow()
    metadata = job.metadata.merged(metadata_patch).with_stage(next_stage, now)
    new_status = status or STAGE_TO_STATUS[next_stage] or job.status
    return job.model_copy(
        update={
            "stage": next_stage,
            "status": new_status,
            "metadata": metadata,
            "updated_at": now,
        }
    )


def plan_failure(job: ProcessingJob, reason: str, now: datetime | None = None) -> ProcessingJob:
    """Return *job* marked failed; terminal jobs are returned unchanged."""
    if job.stage in TERMINAL_STAGES:
        return job
    now = now or utcnow()
    metadata = job.metadata.merged({"failure_reason": reason}).with_stage(JobStage.FAILED, now)
    return job.model_copy(
        update={
            "stage": JobStage.FAILED,
            "status": JobStatus.FAILED,
            "metadata": metadata,
            "updated_at": now,
        }
    )


REOPENABLE_STAGES: frozenset[JobStage] = frozenset({JobStage.EXTRACTED, JobStage.INDEXED})


def plan_reopen(job: ProcessingJob, now: datetime | None = None) -> ProcessingJob:
    """Return *job* back at ``processing`` status so a resume run can own it.

    The stage is kept.  Only a completed job at ``extracted`` or ``indexed``
    that is not fully embedded qualifies, so of two racing resumes only the
    first sees a ``completed`` status.

    Raises
    ------
    InvalidStageTransitionError
        If the job does not qualify.
    """
    if job.stage not in REOPENABLE_STAGES:
        raise InvalidStageTransitionError(
            f"Job {job.id} is at '{job.stage.value}'; only extracted or indexed jobs resume"
        )
    if job.status is not JobStatus.COMPLETED:
        raise InvalidStageTransitionError(f"Job {job.id} is still {job.status.value}")
    if job.metadata.fully_embedded is not False:
        raise InvalidStageTransitionError(f"Job {job.id} has nothing left to embed")
    return job.model_copy(
        update={"status": JobStatus.PROCESSING, "updated_at": now or utcnow()}
    )


# ---------------------------------------------------------------------------
# JobStateMachine
# ---------------------------------------------------------------------------

class JobStateMachine:
    """Applies guarded transitions through an :class:`IJobStore`."""

    def __init__(self, job_store: IJobStore) -> None:
        self._store = job_store

    async def advance(
        self,
        job_id: str,
        next_stage: JobStage,
        metadata_patch: dict[str, Any] | None = None,
        status: JobStatus | None = None,
        expected_stage: JobStage | None = None,
    ) -> ProcessingJob:
        """Atomically move *job_id* to *next_stage* and merge *metadata_patch*.

        ``advance(..., JobStage.FAILED)`` is routed to :meth:`mark_failed`
        with the patch's ``failureReason`` (or a generic reason).

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        InvalidStageTransitionError
            If the move would go backward, leave ``failed``, or the job is
            not at *expected_stage*.
        """
        if next_stage is JobStage.FAILED:
            patch = metadata_patch or {}
            reason = patch.get("failure_reason") or patch.get("failureReason") or "failed"
            return await self.mark_failed(job_id, str(reason))

        previous: dict[str, JobStage] = {}

        def _mutate(job: ProcessingJob) -> ProcessingJob:
            previous["stage"] = job.stage
            return plan_transition(
                job, next_stage, metadata_patch, status, expected_stage=expected_stage
            )

        updated = await self._store.update_job(job_id, _mutate)
        logger.info(
            "job_stage_advanced",
            job_id=job_id,
            from_stage=previous["stage"].value,
            to_stage=updated.stage.value,
            status=updated.status.value,
        )
        return updated

    async def mark_failed(self, job_id: str, reason: str) -> ProcessingJob:
        """Mark *job_id* failed with *reason*; idempotent, never raises for state.

        A job that is already failed keeps its first reason; an ``injected``
        job is left as is.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        """
        updated = await self._store.update_job(job_id, lambda job: plan_failure(job, reason))
        logger.warning(
            "job_marked_failed",
            job_id=job_id,
            stage=updated.stage.value,
            reason=updated.metadata.failure_reason or reason,
        )
        return updated

    async def annotate(self, job_id: str, metadata_patch: dict[str, Any]) -> ProcessingJob:
        """Merge *metadata_patch* without touching stage or status."""

        def _mutate(job: ProcessingJob) -> ProcessingJob:
            return job.model_copy(
                update={"metadata": job.metadata.merged(metadata_patch), "updated_at": utcnow()}
            )

        return await self._store.update_job(job_id, _mutate)

    async def reopen(self, job_id: str) -> ProcessingJob:
        """Atomically claim a partially embedded job for a resume run.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        InvalidStageTransitionError
            If the job is not a completed, partially embedded ``extracted``
            or ``indexed`` job.
        """
        updated = await self._store.update_job(job_id, plan_reopen)
        logger.info("job_reopened", job_id=job_id, stage=updated.stage.value)
        return updated
