"""Unit tests for keyword scoring over extracted text."""

from __future__ import annotations

from docrag.models.job import ExtractedContent
from docrag.services.chunker import TextChunker
from docrag.services.legacy_retriever import LegacyFallbackRetriever, tokenize


def _content(text: str) -> ExtractedContent:
    return ExtractedContent(job_id="job-1", text=text)


def _retriever(max_windows: int = 3) -> LegacyFallbackRetriever:
    return LegacyFallbackRetriever(
        TextChunker(chunk_size=50, overlap=5, break_tolerance=0), max_windows=max_windows
    )


def test_tokenize_drops_single_characters() -> None:
    assert tokenize("A quick, Brown fox!") == ["quick", "brown", "fox"]


def test_score_is_fraction_of_query_terms() -> None:
    text = ("lorem ipsum " * 4).ljust(50, ".") + "invoice total due".ljust(50, ".")
    hits = _retriever().search("invoice total amount", _content(text))

    assert hits[0].chunk.index == 1
    assert hits[0].score == 2 / 3


def test_more_occurrences_break_ties() -> None:
    text = "alpha beta".ljust(50, ".") + "alpha alpha alpha".ljust(50, ".")
    hits = _retriever().search("alpha", _content(text))

    assert [h.chunk.index for h in hits] == [1, 0]
    assert hits[0].score == hits[1].score == 1.0


def test_limited_to_max_windows() -> None:
    text = "needle ".ljust(50, ".") * 6
    hits = _retriever(max_windows=2).search("needle", _content(text))
    assert [h.chunk.index for h in hits] == [0, 1]


def test_no_match_returns_first_window_with_zero_score() -> None:
    text = "nothing relevant".ljust(50, ".") * 3
    hits = _retriever().search("zebra", _content(text))

    assert len(hits) == 1
    assert hits[0].chunk.index == 0
    assert hits[0].score == 0.0


def test_empty_content_returns_nothing() -> None:
    assert _retriever().search("anything", _content("")) == []
