"""Job store adapters."""

from docrag.providers.job_store.sqlite_job_store import SQLiteJobStore

__all__ = ["SQLiteJobStore"]
