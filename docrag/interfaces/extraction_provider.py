"""Abstract base class for text-extraction backends.

Given the object-store reference of an uploaded file, a backend returns its
plain text and, optionally, structured detail (pages, table rows).  Failures
must be distinguishable: :class:`~docrag.utils.errors.UnsupportedFormatError`
is permanent, :class:`~docrag.utils.errors.TransientExtractionError` may clear
on retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExtractionRequest(BaseModel):
    """What the pipeline knows about the file to extract."""

    model_config = ConfigDict(frozen=True)

    storage_key: str
    file_name: str
    file_type: str = Field(description="Declared MIME type or extension.")
    analysis_target: str | None = Field(
        default=None, description="Requested analysis; ``None`` means document analysis."
    )


class ExtractionResult(BaseModel):
    """Plain text plus optional structure from a backend."""

    model_config = ConfigDict(frozen=True)

    text: str
    structured: dict[str, Any] | None = None
    provider_name: str
    truncated: bool = False


# Concrete implementation: LocalExtractionProvider (docrag/providers/extraction/)
class IExtractionProvider(ABC):
    """Contract for the OCR/extraction collaborator."""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """Extract text from the stored file.

        Raises
        ------
        docrag.utils.errors.UnsupportedFormatError
            The format cannot be read by this backend.
        docrag.utils.errors.TransientExtractionError
            The backend failed for a reason that may clear on retry.
        """

    @abstractmethod
    def supports(self, file_type: str, file_name: str) -> bool:
        """Return ``True`` if this backend can read the declared format."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"local_extraction"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the backend is ready."""
