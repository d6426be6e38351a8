"""Abstract base class for persisting jobs and their extracted content.

The job store is the only place job state lives.  Every stage change goes
through :meth:`IJobStore.update_job`, which applies a pure guard function
to the current record inside a single transaction, so concurrent or retried
worker invocations can never interleave a read-modify-write on one job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from docrag.models.job import ExtractedContent, JobStage, ProcessingJob

JobMutation = Callable[[ProcessingJob], ProcessingJob]


# Concrete implementation: SQLiteJobStore (docrag/providers/job_store/)
class IJobStore(ABC):
    """Contract for job and extracted-content persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    @abstractmethod
    async def create_job(self, job: ProcessingJob) -> ProcessingJob:
        """Insert a new job record."""

    @abstractmethod
    async def get_job(self, job_id: str) -> ProcessingJob | None:
        """Return the job, or ``None`` if it does not exist."""

    @abstractmethod
    async def get_jobs(self, job_ids: list[str]) -> list[ProcessingJob]:
        """Return the existing jobs among *job_ids*; missing ids are skipped."""

    @abstractmethod
    async def list_jobs(
        self,
        owner_id: str | None = None,
        stages: set[JobStage] | None = None,
    ) -> list[ProcessingJob]:
        """Return jobs, optionally filtered by owner and stage, oldest first."""

    @abstractmethod
    async def update_job(self, job_id: str, mutate: JobMutation) -> ProcessingJob:
        """Atomically replace the job with ``mutate(current)``.

        Raises
        ------
        docrag.utils.errors.JobNotFoundError
            If *job_id* does not exist.
        """

    @abstractmethod
    async def save_extracted_content(self, content: ExtractedContent) -> None:
        """Persist extracted text for a job; at most one per job.

        Raises
        ------
        docrag.utils.errors.StorageError
            If content already exists for the job.
        """

    @abstractmethod
    async def get_extracted_content(self, job_id: str) -> ExtractedContent | None:
        """Return the job's extracted content, if any."""

    @abstractmethod
    async def get_extracted_contents(self, job_ids: list[str]) -> dict[str, ExtractedContent]:
        """Return extracted content keyed by job id for those that have it."""

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool:
        """Delete the job and its extracted content; ``False`` if absent."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"sqlite_job_store"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` once the store has been initialised."""
