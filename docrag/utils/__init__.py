"""Utility modules for docrag.

- **errors** -- Domain exception hierarchy rooted at DocRAGError; each
  collaborator raises its own subclass so the pipeline can tell a permanent
  failure from a transient one.
- **deadlines** -- The single timeout/bounded-retry combinator wrapped
  around every external call.
- **logging** -- structlog setup with coloured console output in
  development and JSON in production.
"""

from docrag.utils.deadlines import calculate_backoff, with_deadline
from docrag.utils.errors import (
    ConfigurationError,
    DeadlineExceededError,
    DocRAGError,
    EmbeddingError,
    ExtractionError,
    InvalidStageTransitionError,
    InvalidUploadError,
    JobNotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    StorageError,
    TransientExtractionError,
    UnsupportedFormatError,
    UploadNotFoundError,
    UploadTokenError,
    VectorStoreError,
)
from docrag.utils.logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "DeadlineExceededError",
    "DocRAGError",
    "EmbeddingError",
    "ExtractionError",
    "InvalidStageTransitionError",
    "InvalidUploadError",
    "JobNotFoundError",
    "ProviderUnavailableError",
    "RateLimitError",
    "StorageError",
    "TransientExtractionError",
    "UnsupportedFormatError",
    "UploadNotFoundError",
    "UploadTokenError",
    "VectorStoreError",
    "calculate_backoff",
    "configure_logging",
    "get_logger",
    "with_deadline",
]
