"""Text extraction adapters."""

from docrag.providers.extraction.local_extraction_provider import LocalExtractionProvider

__all__ = ["LocalExtractionProvider"]
