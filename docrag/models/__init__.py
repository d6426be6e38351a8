"""Pydantic v2 models for jobs, chunks and retrieval results."""

from docrag.models.job import (
    STAGE_ORDER,
    ExtractedContent,
    IngestionOutcome,
    IngestionResult,
    JobMetadata,
    JobStage,
    JobStatus,
    ProcessingJob,
    StageHistoryEntry,
    UploadTarget,
)
from docrag.models.rag import (
    DocumentChunk,
    RetrievalResult,
    RetrievedChunk,
    ScoredChunk,
    SearchMode,
)

__all__ = [
    "STAGE_ORDER",
    "DocumentChunk",
    "ExtractedContent",
    "IngestionOutcome",
    "IngestionResult",
    "JobMetadata",
    "JobStage",
    "JobStatus",
    "ProcessingJob",
    "RetrievalResult",
    "RetrievedChunk",
    "ScoredChunk",
    "SearchMode",
    "StageHistoryEntry",
    "UploadTarget",
]
