"""Public interface definitions for every external collaborator.

Business logic talks to collaborators only through these abstract base
classes; concrete adapters live in ``docrag/providers/`` and are wired in
``docrag/main.py``.  Tests inject ``MagicMock(spec=...)`` doubles.

CONCRETE PROVIDER MAP:
    Interface               ->  Concrete implementations
    ---------------------------------------------------------------
    IEmbeddingProvider      ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IVectorStoreProvider    ->  ChromaDBVectorStore
    IExtractionProvider     ->  LocalExtractionProvider
    IObjectStoreProvider    ->  LocalObjectStore
    IJobStore               ->  SQLiteJobStore
"""

from docrag.interfaces.embedding_provider import IEmbeddingProvider
from docrag.interfaces.extraction_provider import (
    ExtractionRequest,
    ExtractionResult,
    IExtractionProvider,
)
from docrag.interfaces.job_store_provider import IJobStore, JobMutation
from docrag.interfaces.object_store_provider import IObjectStoreProvider
from docrag.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "ExtractionRequest",
    "ExtractionResult",
    "IEmbeddingProvider",
    "IExtractionProvider",
    "IJobStore",
    "IObjectStoreProvider",
    "IVectorStoreProvider",
    "JobMutation",
]
