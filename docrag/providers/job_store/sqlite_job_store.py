"""SQLite-backed job store.

Persists :class:`ProcessingJob` records and their :class:`ExtractedContent`
to a local SQLite database (default ``data/jobs.db``) using ``aiosqlite``.

Stage changes run inside ``BEGIN IMMEDIATE`` transactions: the write lock is
taken before the current row is read, so the guard function passed to
:meth:`SQLiteJobStore.update_job` always sees the latest committed state.
Extracted content cascades on job deletion.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from docrag.interfaces.job_store_provider import IJobStore, JobMutation
from docrag.models.job import (
    ExtractedContent,
    JobMetadata,
    JobStage,
    ProcessingJob,
)
from docrag.utils.errors import JobNotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/jobs.db")
_BUSY_TIMEOUT_SECONDS = 30.0

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS processing_jobs (
    id           TEXT PRIMARY KEY,
    owner_id     TEXT    NOT NULL,
    file_name    TEXT    NOT NULL,
    file_type    TEXT    NOT NULL,
    file_size    INTEGER NOT NULL,
    storage_key  TEXT    NOT NULL UNIQUE,
    status       TEXT    NOT NULL,
    stage        TEXT    NOT NULL,
    metadata     TEXT    NOT NULL DEFAULT '{}',
    created_at   TEXT    NOT NULL,
    updated_at   TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS extracted_content (
    job_id      TEXT PRIMARY KEY REFERENCES processing_jobs(id) ON DELETE CASCADE,
    text        TEXT NOT NULL,
    structured  TEXT,
    created_at  TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_jobs_owner ON processing_jobs(owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_stage ON processing_jobs(stage);",
]

_JOB_COLUMNS = (
    "id, owner_id, file_name, file_type, file_size, storage_key, "
    "status, stage, metadata, created_at, updated_at"
)

_INSERT_JOB_SQL = f"""\
INSERT INTO processing_jobs ({_JOB_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_JOB_SQL = f"SELECT {_JOB_COLUMNS} FROM processing_jobs WHERE id = ?;"

_UPDATE_JOB_SQL = """\
UPDATE processing_jobs
SET status = ?, stage = ?, metadata = ?, updated_at = ?
WHERE id = ?;
"""

_INSERT_CONTENT_SQL = """\
INSERT INTO extracted_content (job_id, text, structured, created_at)
VALUES (?, ?, ?, ?);
"""


def _row_to_job(row: aiosqlite.Row) -> ProcessingJob:
    data = dict(row)
    data["metadata"] = JobMetadata.model_validate_json(data["metadata"] or "{}")
    return ProcessingJob.model_validate(data)


def _row_to_content(row: aiosqlite.Row) -> ExtractedContent:
    data = dict(row)
    structured = data.get("structured")
    data["structured"] = json.loads(structured) if structured else None
    return ExtractedContent.model_validate(data)


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class SQLiteJobStore(IJobStore):
    """aiosqlite job persistence with guarded, transactional updates."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        # isolation_level=None: transactions are opened explicitly below.
        async with aiosqlite.connect(
            str(self._db_path),
            isolation_level=None,
            timeout=_BUSY_TIMEOUT_SECONDS,
        ) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
        logger.info("job_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(self, job: ProcessingJob) -> ProcessingJob:
        try:
            async with self._connect() as db:
                await db.execute(
                    _INSERT_JOB_SQL,
                    (
                        job.id,
                        job.owner_id,
                        job.file_name,
                        job.file_type,
                        job.file_size,
                        job.storage_key,
                        job.status.value,
                        job.stage.value,
                        job.metadata.model_dump_json(),
                        job.created_at.isoformat(),
                        job.updated_at.isoformat(),
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise StorageError(
                message=f"Job {job.id} could not be created: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("job_created", job_id=job.id, owner_id=job.owner_id, file_name=job.file_name)
        return job

    async def get_job(self, job_id: str) -> ProcessingJob | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_JOB_SQL, (job_id,))
            row = await cursor.fetchone()
        return _row_to_job(row) if row is not None else None

    async def get_jobs(self, job_ids: list[str]) -> list[ProcessingJob]:
        if not job_ids:
            return []
        unique_ids = list(dict.fromkeys(job_ids))
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM processing_jobs "
                f"WHERE id IN ({_placeholders(len(unique_ids))}) ORDER BY created_at, id",
                unique_ids,
            )
            rows = await cursor.fetchall()
        return [_row_to_job(r) for r in rows]

    async def list_jobs(
        self,
        owner_id: str | None = None,
        stages: set[JobStage] | None = None,
    ) -> list[ProcessingJob]:
        clauses: list[str] = []
        params: list[Any] = []
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if stages:
            ordered = sorted(s.value for s in stages)
            clauses.append(f"stage IN ({_placeholders(len(ordered))})")
            params.extend(ordered)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM processing_jobs{where} ORDER BY created_at, id",
                params,
            )
            rows = await cursor.fetchall()
        return [_row_to_job(r) for r in rows]

    async def update_job(self, job_id: str, mutate: JobMutation) -> ProcessingJob:
        """Apply *mutate* to the current record as one atomic transaction.

        *mutate* runs while the write lock is held; whatever it raises rolls
        the transaction back and propagates unchanged.
        """
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(_SELECT_JOB_SQL, (job_id,))
                row = await cursor.fetchone()
                if row is None:
                    raise JobNotFoundError(job_id, provider_name=self.get_provider_name())
                current = _row_to_job(row)
                updated = mutate(current)
                if updated is not current:
                    await db.execute(
                        _UPDATE_JOB_SQL,
                        (
                            updated.status.value,
                            updated.stage.value,
                            updated.metadata.model_dump_json(),
                            updated.updated_at.isoformat(),
                            job_id,
                        ),
                    )
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise
        return updated

    async def delete_job(self, job_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM processing_jobs WHERE id = ?", (job_id,))
            deleted = cursor.rowcount > 0
        logger.info("job_deleted", job_id=job_id, deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Extracted content
    # ------------------------------------------------------------------

    async def save_extracted_content(self, content: ExtractedContent) -> None:
        structured = json.dumps(content.structured) if content.structured is not None else None
        try:
            async with self._connect() as db:
                await db.execute(
                    _INSERT_CONTENT_SQL,
                    (content.job_id, content.text, structured, content.created_at.isoformat()),
                )
        except aiosqlite.IntegrityError as exc:
            raise StorageError(
                message=f"Extracted content for job {content.job_id} already exists or job is missing",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("extracted_content_saved", job_id=content.job_id, chars=len(content.text))

    async def get_extracted_content(self, job_id: str) -> ExtractedContent | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT job_id, text, structured, created_at FROM extracted_content WHERE job_id = ?",
                (job_id,),
            )
            row = await cursor.fetchone()
        return _row_to_content(row) if row is not None else None

    async def get_extracted_contents(self, job_ids: list[str]) -> dict[str, ExtractedContent]:
        if not job_ids:
            return {}
        unique_ids = list(dict.fromkeys(job_ids))
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT job_id, text, structured, created_at FROM extracted_content "
                f"WHERE job_id IN ({_placeholders(len(unique_ids))})",
                unique_ids,
            )
            rows = await cursor.fetchall()
        return {row["job_id"]: _row_to_content(row) for row in rows}

    def get_provider_name(self) -> str:
        return "sqlite_job_store"

    def is_available(self) -> bool:
        return self._db_path.exists()
