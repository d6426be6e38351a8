"""Business logic for docrag.

- **ingestion_service** -- Orchestrates register -> upload -> extract ->
  chunk -> embed -> write for one job.
- **job_state_machine** -- Guarded, atomic stage transitions.
- **chunker** -- Overlapping character windows with natural break points.
- **embedding_batcher** -- Bounded batch embedding with per-batch and
  overall deadlines.
- **index_writer** -- Idempotent vector-row writes with per-row fallback.
- **retrieval_service** / **legacy_retriever** -- Query-time vector search
  with a keyword fallback over raw extracted text.
"""

from docrag.services.chunker import TextChunk, TextChunker
from docrag.services.embedding_batcher import EmbeddingBatchProcessor, EmbeddingBatchResult
from docrag.services.index_writer import IndexWriteResult, VectorIndexWriter
from docrag.services.ingestion_service import IngestionService
from docrag.services.job_state_machine import JobStateMachine, plan_failure, plan_transition
from docrag.services.legacy_retriever import LegacyFallbackRetriever, LegacyHit
from docrag.services.retrieval_service import RetrievalService

__all__ = [
    "EmbeddingBatchProcessor",
    "EmbeddingBatchResult",
    "IndexWriteResult",
    "IngestionService",
    "JobStateMachine",
    "LegacyFallbackRetriever",
    "LegacyHit",
    "RetrievalService",
    "TextChunk",
    "TextChunker",
    "VectorIndexWriter",
    "plan_failure",
    "plan_transition",
]
