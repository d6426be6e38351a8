"""Unit tests for LocalExtractionProvider format dispatch."""

from __future__ import annotations

from unittest.mock import patch

import fitz
import pytest

from docrag.interfaces.extraction_provider import ExtractionRequest
from docrag.models.job import AnalysisTarget
from docrag.providers.extraction.local_extraction_provider import (
    TRUNCATION_MARKER,
    LocalExtractionProvider,
    classify,
    resolve_target,
)
from docrag.utils.errors import ExtractionError, UnsupportedFormatError


def _request(
    key: str, name: str, file_type: str, analysis_target: str | None = None
) -> ExtractionRequest:
    return ExtractionRequest(
        storage_key=key, file_name=name, file_type=file_type, analysis_target=analysis_target
    )


def _pdf_bytes(*pages: str) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class TestClassify:
    @pytest.mark.parametrize(
        ("file_type", "file_name", "expected"),
        [
            ("text/plain", "a.bin", "text"),
            ("text/csv; charset=utf-8", "a", "tabular"),
            ("application/pdf", "", "pdf"),
            ("image/png", "", "image"),
            ("application/octet-stream", "notes.md", "text"),
            (".tsv", "", "tabular"),
            ("application/zip", "a.zip", None),
        ],
    )
    def test_dispatch(self, file_type: str, file_name: str, expected: str | None) -> None:
        assert classify(file_type, file_name) == expected


class TestResolveTarget:
    @pytest.mark.parametrize(
        ("kind", "target", "expected"),
        [
            ("text", None, AnalysisTarget.DOCUMENT_ANALYSIS),
            ("pdf", "document-analysis", AnalysisTarget.DOCUMENT_ANALYSIS),
            ("pdf", "image-ocr", AnalysisTarget.IMAGE_OCR),
            ("image", "image-ocr", AnalysisTarget.IMAGE_OCR),
            ("tabular", "image-ocr", None),
            ("tabular", "anything", None),
        ],
    )
    def test_accepted(self, kind: str, target: str | None, expected: AnalysisTarget | None) -> None:
        assert resolve_target(kind, target) is expected

    def test_unknown_target(self) -> None:
        with pytest.raises(UnsupportedFormatError, match="Unsupported analysis target 'finance'"):
            resolve_target("text", "finance")

    def test_ocr_on_plain_text(self) -> None:
        with pytest.raises(UnsupportedFormatError, match="image-ocr"):
            resolve_target("text", "image-ocr")


class TestExtract:
    @pytest.mark.asyncio
    async def test_plain_text_strips_bom(self, object_store) -> None:
        await object_store.put("incoming/a.txt", "\ufeffhello world".encode("utf-8"))
        provider = LocalExtractionProvider(object_store)

        result = await provider.extract(_request("incoming/a.txt", "a.txt", "text/plain"))

        assert result.text == "hello world"
        assert result.truncated is False
        assert result.provider_name == "local_extraction"

    @pytest.mark.asyncio
    async def test_csv_is_truncated_with_marker(self, object_store) -> None:
        await object_store.put("incoming/a.csv", b"a,b\n" * 50)
        provider = LocalExtractionProvider(object_store, csv_max_chars=20)

        result = await provider.extract(_request("incoming/a.csv", "a.csv", "text/csv"))

        assert result.truncated is True
        assert result.text == ("a,b\n" * 5) + TRUNCATION_MARKER
        assert result.structured == {"format": "tabular", "rows": 50}

    @pytest.mark.asyncio
    async def test_unsupported_format(self, object_store) -> None:
        provider = LocalExtractionProvider(object_store)
        with pytest.raises(UnsupportedFormatError):
            await provider.extract(_request("incoming/a.zip", "a.zip", "application/zip"))

    @pytest.mark.asyncio
    async def test_missing_upload(self, object_store) -> None:
        provider = LocalExtractionProvider(object_store)
        with pytest.raises(ExtractionError) as exc_info:
            await provider.extract(_request("incoming/none.txt", "none.txt", "text/plain"))
        assert not isinstance(exc_info.value, UnsupportedFormatError)

    @pytest.mark.asyncio
    async def test_pdf_text_layer(self, object_store) -> None:
        await object_store.put("incoming/a.pdf", _pdf_bytes("First page", "Second page"))
        provider = LocalExtractionProvider(object_store)

        result = await provider.extract(_request("incoming/a.pdf", "a.pdf", "application/pdf"))

        assert "First page" in result.text
        assert "Second page" in result.text
        assert [p["page"] for p in result.structured["pages"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_corrupt_pdf_is_unsupported(self, object_store) -> None:
        await object_store.put("incoming/bad.pdf", b"not a pdf at all")
        provider = LocalExtractionProvider(object_store)
        with pytest.raises(UnsupportedFormatError):
            await provider.extract(_request("incoming/bad.pdf", "bad.pdf", "application/pdf"))

    @pytest.mark.asyncio
    async def test_image_goes_through_ocr(self, object_store) -> None:
        from io import BytesIO

        from PIL import Image

        buffer = BytesIO()
        Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
        await object_store.put("incoming/a.png", buffer.getvalue())
        provider = LocalExtractionProvider(object_store)

        with patch(
            "docrag.providers.extraction.local_extraction_provider.pytesseract.image_to_string",
            return_value="  scanned text \n",
        ):
            result = await provider.extract(_request("incoming/a.png", "a.png", "image/png"))

        assert result.text == "scanned text"
        assert result.structured == {"format": "image", "width": 40, "height": 20}

    def test_supports(self, object_store) -> None:
        provider = LocalExtractionProvider(object_store)
        assert provider.supports("text/plain", "a.txt")
        assert not provider.supports("application/zip", "a.zip")

    @pytest.mark.asyncio
    async def test_unknown_target_is_rejected_before_reading(self, object_store) -> None:
        provider = LocalExtractionProvider(object_store)
        with pytest.raises(UnsupportedFormatError):
            await provider.extract(
                _request("incoming/none.txt", "none.txt", "text/plain", analysis_target="finance")
            )

    @pytest.mark.asyncio
    async def test_pdf_image_ocr_target_renders_pages(self, object_store) -> None:
        await object_store.put("incoming/scan.pdf", _pdf_bytes("ignored layer", "second"))
        provider = LocalExtractionProvider(object_store)

        with patch(
            "docrag.providers.extraction.local_extraction_provider.pytesseract.image_to_string",
            side_effect=["page one words", "  "],
        ) as ocr:
            result = await provider.extract(
                _request("incoming/scan.pdf", "scan.pdf", "application/pdf", analysis_target="image-ocr")
            )

        assert ocr.call_count == 2
        assert result.text == "page one words"
        assert result.structured["ocr"] is True
        assert result.structured["pages"] == [{"page": 1, "chars": 14}, {"page": 2, "chars": 0}]
