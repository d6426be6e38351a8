"""Keyword retrieval over raw extracted text.

Used for jobs that have extracted content but no vectors, and for every job
when the query cannot be embedded.  The text is windowed with the same
:class:`TextChunker` as ingestion, so legacy hits carry the chunk indices a
vector hit for the same window would have.

A window's score is the fraction of distinct query terms it contains
(0..1, comparable with clamped cosine similarity).  Among equal scores the
window with more total term occurrences wins, then the earlier window.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

import structlog

from docrag.models.job import ExtractedContent
from docrag.services.chunker import TextChunk, TextChunker

logger = structlog.get_logger(logger_name=__name__)

_TOKEN = re.compile(r"\w+")


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens of two or more characters."""
    return [t for t in _TOKEN.findall(text.lower()) if len(t) >= 2]


@dataclass(frozen=True, slots=True)
class LegacyHit:
    chunk: TextChunk
    score: float
    term_hits: int


class LegacyFallbackRetriever:
    """Scores on-the-fly windows of a job's extracted text against a query."""

    def __init__(self, chunker: TextChunker, max_windows: int = 3) -> None:
        self._chunker = chunker
        self._max_windows = max(1, max_windows)

    def search(self, query: str, content: ExtractedContent) -> list[LegacyHit]:
        """Return up to ``max_windows`` best windows for *query*.

        When no window contains any query term the first window is returned
        with score 0.0 so the document is still represented.  Empty content
        returns nothing.
        """
        windows = self._chunker.split(content.text)
        if not windows:
            return []

        terms = set(tokenize(query))
        scored: list[LegacyHit] = []
        for window in windows:
            if not terms:
                scored.append(LegacyHit(window, 0.0, 0))
                continue
            counts = Counter(tokenize(window.text))
            present = sum(1 for term in terms if counts[term])
            term_hits = sum(counts[term] for term in terms)
            scored.append(LegacyHit(window, present / len(terms), term_hits))

        matching = [hit for hit in scored if hit.score > 0]
        if not matching:
            logger.debug("legacy_no_term_match", job_id=content.job_id, windows=len(windows))
            return [scored[0]]

        matching.sort(key=lambda hit: (-hit.score, -hit.term_hits, hit.chunk.index))
        best = matching[: self._max_windows]
        logger.debug(
            "legacy_search",
            job_id=content.job_id,
            windows=len(windows),
            matching=len(matching),
            top_score=best[0].score,
        )
        return best
