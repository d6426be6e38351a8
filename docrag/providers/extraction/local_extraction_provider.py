"""In-process text extraction for uploaded documents.

Dispatches on the declared MIME type (falling back to the file extension):

- plain text, Markdown, JSON: decoded as UTF-8;
- CSV / TSV: decoded directly and truncated at ``csv_max_chars`` with a
  visible marker, since spreadsheets can be arbitrarily large;
- PDF: text layer read page by page with PyMuPDF, or, for the
  ``image-ocr`` analysis target, each page rendered and read by Tesseract;
- PNG / JPEG / TIFF / WebP / BMP: OCR with Tesseract via pytesseract.

The analysis target must be ``document-analysis`` (the default) or
``image-ocr``; tabular files accept any target.  ``image-ocr`` on a plain
text file is refused.

Anything else raises :class:`UnsupportedFormatError`.  A file that claims a
supported format but cannot be parsed is also permanent
(``UnsupportedFormatError``); failures of the OCR engine itself and object
store read errors are :class:`TransientExtractionError`.
"""

from __future__ import annotations

import asyncio
import io
from pathlib import PurePosixPath
from typing import Any

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import pytesseract
import structlog
from PIL import Image, UnidentifiedImageError

from docrag.interfaces.extraction_provider import (
    ExtractionRequest,
    ExtractionResult,
    IExtractionProvider,
)
from docrag.interfaces.object_store_provider import IObjectStoreProvider
from docrag.models.job import AnalysisTarget
from docrag.utils.errors import (
    ExtractionError,
    StorageError,
    TransientExtractionError,
    UnsupportedFormatError,
    UploadNotFoundError,
)

logger = structlog.get_logger(logger_name=__name__)

TRUNCATION_MARKER = "\n\n[... file truncated, showing first 500KB ...]"

# Render resolution for OCR of PDF pages.
_OCR_DPI = 200

_TEXT_TYPES = {"text/plain", "text/markdown", "application/json", "text/x-markdown"}
_TABULAR_TYPES = {"text/csv", "text/tab-separated-values", "application/vnd.ms-excel"}
_PDF_TYPES = {"application/pdf"}
_IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/tiff", "image/webp", "image/bmp"}

_EXTENSION_KINDS: dict[str, str] = {
    ".txt": "text",
    ".md": "text",
    ".markdown": "text",
    ".json": "text",
    ".log": "text",
    ".csv": "tabular",
    ".tsv": "tabular",
    ".pdf": "pdf",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".tif": "image",
    ".tiff": "image",
    ".webp": "image",
    ".bmp": "image",
}


def classify(file_type: str, file_name: str) -> str | None:
    """Return ``"text" | "tabular" | "pdf" | "image"`` or ``None``."""
    mime = (file_type or "").split(";", 1)[0].strip().lower()
    if mime in _TABULAR_TYPES:
        return "tabular"
    if mime in _TEXT_TYPES:
        return "text"
    if mime in _PDF_TYPES:
        return "pdf"
    if mime in _IMAGE_TYPES:
        return "image"
    suffix = PurePosixPath(file_name or "").suffix.lower()
    if not suffix and mime.startswith("."):
        suffix = mime
    return _EXTENSION_KINDS.get(suffix)


def resolve_target(kind: str, analysis_target: str | None) -> AnalysisTarget | None:
    """Validate *analysis_target* for a file of *kind*.

    Returns ``None`` for tabular files, which are read the same way whatever
    was requested.

    Raises
    ------
    UnsupportedFormatError
        For an unknown target, or ``image-ocr`` on a plain text file.
    """
    if kind == "tabular":
        return None
    try:
        target = AnalysisTarget(analysis_target or AnalysisTarget.DOCUMENT_ANALYSIS.value)
    except ValueError:
        raise UnsupportedFormatError(
            message=f"Unsupported analysis target '{analysis_target}'",
            provider_name="local_extraction",
        ) from None
    if target is AnalysisTarget.IMAGE_OCR and kind == "text":
        raise UnsupportedFormatError(
            message="Analysis target 'image-ocr' needs an image or a PDF",
            provider_name="local_extraction",
        )
    return target


class LocalExtractionProvider(IExtractionProvider):
    """Extraction backend that reads the raw bytes from the object store."""

    def __init__(self, object_store: IObjectStoreProvider, csv_max_chars: int = 500_000) -> None:
        self._object_store = object_store
        self._csv_max_chars = csv_max_chars

    # ------------------------------------------------------------------
    # IExtractionProvider implementation
    # ------------------------------------------------------------------

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        kind = classify(request.file_type, request.file_name)
        if kind is None:
            raise UnsupportedFormatError(
                message=f"Unsupported file type '{request.file_type}' for {request.file_name}",
                provider_name=self.get_provider_name(),
            )

        target = resolve_target(kind, request.analysis_target)

        try:
            data = await self._object_store.get(request.storage_key)
        except UploadNotFoundError as exc:
            raise ExtractionError(
                message=f"Uploaded file is missing: {request.storage_key}",
                provider_name=self.get_provider_name(),
            ) from exc
        except StorageError as exc:
            raise TransientExtractionError(
                message=f"Could not read {request.storage_key}: {exc.message}",
                provider_name=self.get_provider_name(),
            ) from exc

        if kind == "text":
            result = ExtractionResult(
                text=self._decode(data),
                provider_name=self.get_provider_name(),
            )
        elif kind == "tabular":
            result = self._extract_tabular(data)
        elif kind == "pdf":
            handler = (
                self._extract_pdf_ocr if target is AnalysisTarget.IMAGE_OCR else self._extract_pdf
            )
            result = await asyncio.to_thread(handler, data)
        else:
            result = await asyncio.to_thread(self._extract_image, data)

        logger.info(
            "text_extracted",
            storage_key=request.storage_key,
            kind=kind,
            analysis_target=target.value if target else None,
            chars=len(result.text),
            truncated=result.truncated,
        )
        return result

    def supports(self, file_type: str, file_name: str) -> bool:
        return classify(file_type, file_name) is not None

    def get_provider_name(self) -> str:
        return "local_extraction"

    def is_available(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(data: bytes) -> str:
        text = data.decode("utf-8", errors="replace")
        return text.removeprefix("\ufeff")

    def _extract_tabular(self, data: bytes) -> ExtractionResult:
        text = self._decode(data)
        rows = text.count("\n") + (1 if text and not text.endswith("\n") else 0)
        truncated = len(text) > self._csv_max_chars
        if truncated:
            text = text[: self._csv_max_chars] + TRUNCATION_MARKER
        return ExtractionResult(
            text=text,
            structured={"format": "tabular", "rows": rows},
            provider_name=self.get_provider_name(),
            truncated=truncated,
        )

    def _open_pdf(self, data: bytes) -> fitz.Document:
        try:
            return fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise UnsupportedFormatError(
                message=f"Unreadable PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _extract_pdf(self, data: bytes) -> ExtractionResult:
        doc = self._open_pdf(data)
        pages: list[dict[str, Any]] = []
        texts: list[str] = []
        try:
            for page_num in range(len(doc)):
                page_text = doc[page_num].get_text().strip()
                pages.append({"page": page_num + 1, "chars": len(page_text)})
                if page_text:
                    texts.append(page_text)
        finally:
            doc.close()

        return ExtractionResult(
            text="\n\n".join(texts),
            structured={"format": "pdf", "pages": pages},
            provider_name=self.get_provider_name(),
        )

    def _extract_pdf_ocr(self, data: bytes) -> ExtractionResult:
        """Render every page and OCR it; for scanned PDFs with no text layer."""
        doc = self._open_pdf(data)
        pages: list[dict[str, Any]] = []
        texts: list[str] = []
        try:
            for page_num in range(len(doc)):
                pixmap = doc[page_num].get_pixmap(dpi=_OCR_DPI)
                image = Image.open(io.BytesIO(pixmap.tobytes("png")))
                page_text = self._ocr(image).strip()
                pages.append({"page": page_num + 1, "chars": len(page_text)})
                if page_text:
                    texts.append(page_text)
        finally:
            doc.close()

        return ExtractionResult(
            text="\n\n".join(texts),
            structured={"format": "pdf", "ocr": True, "pages": pages},
            provider_name=self.get_provider_name(),
        )

    def _extract_image(self, data: bytes) -> ExtractionResult:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise UnsupportedFormatError(
                message=f"Unreadable image: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        return ExtractionResult(
            text=self._ocr(image).strip(),
            structured={"format": "image", "width": image.width, "height": image.height},
            provider_name=self.get_provider_name(),
        )

    @staticmethod
    def _ocr(image: Image.Image) -> str:
        try:
            return pytesseract.image_to_string(image.convert("RGB"))
        except pytesseract.TesseractNotFoundError as exc:
            raise TransientExtractionError(
                message="Tesseract binary not found",
                provider_name="tesseract",
            ) from exc
        except pytesseract.TesseractError as exc:
            raise TransientExtractionError(
                message=f"Tesseract failed: {exc}",
                provider_name="tesseract",
            ) from exc
