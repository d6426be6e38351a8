"""Character-window text chunking with exact overlap.

Splits extracted text into windows of at most ``chunk_size`` characters.
Each window after the first starts ``overlap`` characters before the end of
the previous one, so:

- adjacent chunks share exactly ``overlap`` characters;
- dropping the first ``overlap`` characters of every chunk but the first and
  concatenating reconstructs the input exactly.

To avoid cutting mid-word, the end of a window may move back by up to
``break_tolerance`` characters to the nearest paragraph break, else sentence
end, else whitespace.  With no boundary in that range the window is cut hard
at ``chunk_size``.  Chunks are never stripped; whitespace belongs to the
window it falls in.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

import structlog

from docrag.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_SENTENCE_END = re.compile(r"[.!?][\s]")


@dataclass(frozen=True, slots=True)
class TextChunk:
    """One window of the source text, with its character offsets."""

    index: int
    text: str
    start: int
    end: int

    @property
    def estimated_tokens(self) -> int:
        return math.ceil(len(self.text) / 4)


class TextChunker:
    """Splits text into overlapping character windows.

    Parameters
    ----------
    chunk_size:
        Maximum characters per chunk (default 2000).
    overlap:
        Characters shared by adjacent chunks (default 150).  Must be
        strictly less than *chunk_size*.
    break_tolerance:
        How far before the hard limit a window may end to land on a
        boundary (default 200).  Clamped so every window still advances.
    """

    def __init__(self, chunk_size: int = 2000, overlap: int = 150, break_tolerance: int = 200) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ConfigurationError(
                f"overlap must be >= 0 and strictly less than chunk_size "
                f"(overlap={overlap}, chunk_size={chunk_size})"
            )
        if break_tolerance < 0:
            raise ConfigurationError(f"break_tolerance must be >= 0, got {break_tolerance}")
        self._chunk_size = chunk_size
        self._overlap = overlap
        # A window must end past start + overlap or the walk would stall.
        self._tolerance = min(break_tolerance, chunk_size - overlap - 1)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def split(self, text: str) -> list[TextChunk]:
        """Split *text* into ordered, overlapping :class:`TextChunk` windows.

        Returns
        -------
        list[TextChunk]
            Empty for empty input; exactly one chunk when the text fits in
            ``chunk_size``.
        """
        if not text:
            return []

        chunks: list[TextChunk] = []
        length = len(text)
        start = 0
        while True:
            hard_end = start + self._chunk_size
            if hard_end >= length:
                chunks.append(TextChunk(len(chunks), text[start:], start, length))
                break
            end = self._find_break(text, start, hard_end)
            chunks.append(TextChunk(len(chunks), text[start:end], start, end))
            start = end - self._overlap

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            text_chars=length,
            chunk_size=self._chunk_size,
            overlap=self._overlap,
        )
        return chunks

    def chunk_texts(self, text: str) -> list[str]:
        """Convenience wrapper returning only the chunk strings."""
        return [c.text for c in self.split(text)]

    # ------------------------------------------------------------------
    # Boundary search
    # ------------------------------------------------------------------

    def _find_break(self, text: str, start: int, hard_end: int) -> int:
        """Return the window end in ``(start + overlap, hard_end]``."""
        if self._tolerance <= 0:
            return hard_end
        window_start = max(hard_end - self._tolerance, start + self._overlap + 1)

        paragraph = text.rfind("\n\n", window_start, hard_end)
        if paragraph != -1:
            return paragraph + 2

        last_sentence = None
        for match in _SENTENCE_END.finditer(text, window_start, hard_end):
            last_sentence = match
        if last_sentence is not None:
            return last_sentence.end()

        for pos in range(hard_end - 1, window_start - 1, -1):
            if text[pos].isspace():
                return pos + 1

        return hard_end
