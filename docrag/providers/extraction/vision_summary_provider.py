"""Vision-model summaries for uploaded images.

Wraps another :class:`IExtractionProvider` (normally the local one) and,
for image uploads, asks an OpenAI-compatible vision model to describe the
picture.  The summary is stored under ``structured["vision_summary"]`` and
becomes the document text whenever OCR found no text, so a photo, chart or
screenshot is still retrievable.

When OCR itself fails for a transient reason (e.g. no Tesseract binary) the
summary alone is returned; if the vision call fails too, the OCR error is
raised.  Non-image uploads pass straight through to the wrapped backend.
"""

from __future__ import annotations

import base64
import time

import openai
import structlog

from docrag.config.settings import Settings
from docrag.interfaces.extraction_provider import (
    ExtractionRequest,
    ExtractionResult,
    IExtractionProvider,
)
from docrag.interfaces.object_store_provider import IObjectStoreProvider
from docrag.providers.extraction.local_extraction_provider import classify
from docrag.utils.errors import StorageError, TransientExtractionError

logger = structlog.get_logger(logger_name=__name__)

# OCR text passed to the model as a hint is capped at this many characters.
_OCR_HINT_CHARS = 4000

_VISION_PROMPT = """\
You are an expert visual analyst. Review the provided image and describe it
for someone who will later search for it by content.

File name: {file_name}
{target_context}
{ocr_context}

Reply in plain text with:
- a summary of 3-5 sentences covering the key visuals, context and tone;
- if it is a chart, its axes, trends and anomalies;
- if it is an interface screenshot, its main UI elements;
- the key text snippets visible in the image, one per line.

Do not add commentary about these instructions."""


def _detect_media_type(image_bytes: bytes) -> str:
    """Detect the MIME type of an image from its magic bytes."""
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return "image/jpeg"


def build_vision_prompt(file_name: str, analysis_target: str | None, ocr_text: str) -> str:
    target_context = (
        f'This upload was tagged as "{analysis_target}". Tailor the summary accordingly.'
        if analysis_target
        else ""
    )
    ocr_context = (
        f'OCR text (may include noise): """{ocr_text[:_OCR_HINT_CHARS]}"""'
        if ocr_text
        else "No OCR text is available."
    )
    return _VISION_PROMPT.format(
        file_name=file_name, target_context=target_context, ocr_context=ocr_context
    )


class VisionSummaryExtractionProvider(IExtractionProvider):
    """Adds a vision-model summary to image extractions.

    Parameters
    ----------
    inner:
        Backend that does the actual extraction (OCR for images).
    object_store:
        Source of the raw image bytes sent to the model.
    settings:
        Supplies ``openai_api_key``, ``openai_base_url`` and
        ``openai_vision_model``.
    """

    def __init__(
        self,
        inner: IExtractionProvider,
        object_store: IObjectStoreProvider,
        settings: Settings,
    ) -> None:
        self._inner = inner
        self._object_store = object_store
        self._api_key = settings.openai_api_key
        self._model = settings.openai_vision_model

        client_kwargs: dict = {"api_key": self._api_key, "max_retries": 0}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        self._client = openai.AsyncOpenAI(**client_kwargs)

    # ------------------------------------------------------------------
    # IExtractionProvider implementation
    # ------------------------------------------------------------------

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        if classify(request.file_type, request.file_name) != "image":
            return await self._inner.extract(request)

        try:
            result = await self._inner.extract(request)
        except TransientExtractionError as ocr_error:
            logger.warning("image_ocr_unavailable", error=str(ocr_error), fallback="vision")
            try:
                summary = await self._summarize(request, ocr_text="")
            except TransientExtractionError as vision_error:
                raise ocr_error from vision_error
            return ExtractionResult(
                text=summary,
                structured={"format": "image", "vision_summary": summary},
                provider_name=self.get_provider_name(),
            )

        try:
            summary = await self._summarize(request, ocr_text=result.text)
        except TransientExtractionError as exc:
            logger.warning("vision_summary_skipped", error=str(exc))
            return result

        return ExtractionResult(
            text=result.text or summary,
            structured={**(result.structured or {}), "vision_summary": summary},
            provider_name=self.get_provider_name() if not result.text else result.provider_name,
            truncated=result.truncated,
        )

    def supports(self, file_type: str, file_name: str) -> bool:
        return self._inner.supports(file_type, file_name)

    def get_provider_name(self) -> str:
        return "openai_vision"

    def is_available(self) -> bool:
        return bool(self._api_key and self._model) and self._inner.is_available()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _summarize(self, request: ExtractionRequest, ocr_text: str) -> str:
        start = time.perf_counter()
        try:
            image_bytes = await self._object_store.get(request.storage_key)
        except StorageError as exc:
            raise TransientExtractionError(
                message=f"Could not read {request.storage_key}: {exc.message}",
                provider_name=self.get_provider_name(),
            ) from exc
        b64 = base64.b64encode(image_bytes).decode("utf-8")
        prompt = build_vision_prompt(request.file_name, request.analysis_target, ocr_text)
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": f"data:{_detect_media_type(image_bytes)};base64,{b64}",
                                },
                            },
                        ],
                    }
                ],
                max_tokens=1200,
            )
        except openai.APIError as exc:
            raise TransientExtractionError(
                message=f"Vision API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise TransientExtractionError(
                message="Vision model returned an empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "vision_summary_complete",
            model=self._model,
            chars=len(content),
            tokens=response.usage.total_tokens if response.usage else None,
            processing_time=round(time.perf_counter() - start, 3),
        )
        return content.strip()
