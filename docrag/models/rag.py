"""Chunk and retrieval data models.

``DocumentChunk`` is the row persisted in the vector store, one per embedded
window of a job's extracted text.  ``RetrievedChunk`` and ``RetrievalResult``
are what a retrieval query returns: a ranked list plus the search mode used
for each candidate job.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def chunk_id_for(job_id: str, chunk_index: int) -> str:
    """Deterministic vector-store id; re-writing an index replaces its row."""
    return f"{job_id}:{chunk_index}"


def context_ref_for(job_id: str, chunk_index: int) -> str:
    """Stable reference handed to chat callers (one-based chunk number)."""
    return f"ctx://{job_id}#chunk/{chunk_index + 1}"


class SearchMode(str, Enum):  # noqa: UP042
    VECTOR = "vector"
    LEGACY = "legacy"


# ---------------------------------------------------------------------------
# DocumentChunk -- one row in the vector store.
# ---------------------------------------------------------------------------
class DocumentChunk(BaseModel):
    """A window of extracted text, ready for embedding and storage."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Deterministic id: '<job_id>:<chunk_index>'.")
    # Back-reference to the owning job; rows are queried across jobs.
    job_id: str
    # Zero-based, contiguous per job; defines original text order.
    chunk_index: int = Field(ge=0)
    text: str
    start_offset: int = Field(ge=0, description="Character offset of the window start.")
    end_offset: int = Field(ge=0, description="Character offset one past the window end.")
    estimated_tokens: int = Field(default=0, ge=0, description="Rough token count (chars / 4).")


class ScoredChunk(BaseModel):
    """A vector-store hit before it is merged with legacy results."""

    model_config = ConfigDict(frozen=True)

    chunk: DocumentChunk
    # Cosine similarity clamped to 0..1.
    similarity: float = Field(ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Retrieval output
# ---------------------------------------------------------------------------
class RetrievedChunk(BaseModel):
    """One ranked result of a retrieval query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    job_id: str
    chunk_index: int = Field(ge=0)
    chunk_text: str
    similarity_score: float = Field(ge=0.0, le=1.0)
    search_mode: SearchMode
    file_name: str | None = None
    context_ref: str


class RetrievalResult(BaseModel):
    """Ranked chunks plus the search mode used for every candidate job."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    results: list[RetrievedChunk] = Field(default_factory=list)
    search_modes: dict[str, SearchMode] = Field(default_factory=dict)
    no_queryable_documents: bool = False
