"""Unit tests for the TextChunker -- overlapping character windows."""

from __future__ import annotations

import pytest

from docrag.services.chunker import TextChunker
from docrag.utils.errors import ConfigurationError


def _reconstruct(chunks, overlap: int) -> str:
    if not chunks:
        return ""
    return chunks[0].text + "".join(c.text[overlap:] for c in chunks[1:])


class TestWindowing:
    def test_unbroken_text_is_cut_at_chunk_size(self) -> None:
        chunker = TextChunker(chunk_size=2000, overlap=150)
        chunks = chunker.split("a" * 5000)

        assert [(c.start, c.end) for c in chunks] == [(0, 2000), (1850, 3850), (3700, 5000)]
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_short_text_is_a_single_chunk(self) -> None:
        chunker = TextChunker(chunk_size=2000, overlap=150)
        chunks = chunker.split("hello world")

        assert len(chunks) == 1
        assert chunks[0].text == "hello world"
        assert (chunks[0].start, chunks[0].end) == (0, 11)

    def test_text_of_exactly_chunk_size_is_one_chunk(self) -> None:
        chunker = TextChunker(chunk_size=100, overlap=10)
        assert len(chunker.split("x" * 100)) == 1

    def test_empty_text_yields_no_chunks(self) -> None:
        assert TextChunker().split("") == []

    def test_chunk_texts_returns_strings(self) -> None:
        chunker = TextChunker(chunk_size=10, overlap=2, break_tolerance=0)
        assert chunker.chunk_texts("abcdefghijklmnop") == ["abcdefghij", "ijklmnop"]


class TestOverlapAndCoverage:
    @pytest.mark.parametrize(
        "text",
        [
            "word " * 1200,
            "First paragraph here.\n\nSecond one follows. " * 150,
            "Sentence one. Sentence two! Sentence three? " * 120,
            "x" * 7777,
        ],
    )
    def test_chunks_reconstruct_input(self, text: str) -> None:
        chunker = TextChunker(chunk_size=500, overlap=50, break_tolerance=100)
        chunks = chunker.split(text)

        assert _reconstruct(chunks, 50) == text
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start == prev.end - 50
            assert prev.text[-50:] == nxt.text[:50]
        assert all(len(c.text) <= 500 for c in chunks)

    def test_offsets_match_text(self) -> None:
        text = "alpha beta gamma delta " * 300
        for chunk in TextChunker(chunk_size=300, overlap=30).split(text):
            assert text[chunk.start : chunk.end] == chunk.text


class TestBreakPoints:
    def test_prefers_paragraph_break(self) -> None:
        text = "a" * 90 + "\n\n" + "b" * 200
        chunks = TextChunker(chunk_size=100, overlap=10, break_tolerance=20).split(text)
        assert chunks[0].text.endswith("\n\n")
        assert chunks[0].end == 92

    def test_falls_back_to_sentence_end(self) -> None:
        text = "a" * 85 + ". " + "b" * 200
        chunks = TextChunker(chunk_size=100, overlap=10, break_tolerance=20).split(text)
        assert chunks[0].end == 87

    def test_falls_back_to_whitespace(self) -> None:
        text = "a" * 95 + " " + "b" * 200
        chunks = TextChunker(chunk_size=100, overlap=10, break_tolerance=20).split(text)
        assert chunks[0].end == 96

    def test_hard_cut_without_boundary(self) -> None:
        chunks = TextChunker(chunk_size=100, overlap=10, break_tolerance=20).split("z" * 300)
        assert chunks[0].end == 100


class TestValidation:
    def test_overlap_must_be_smaller_than_chunk_size(self) -> None:
        with pytest.raises(ConfigurationError):
            TextChunker(chunk_size=100, overlap=100)

    def test_chunk_size_must_be_positive(self) -> None:
        with pytest.raises(ConfigurationError):
            TextChunker(chunk_size=0, overlap=0)

    def test_negative_tolerance_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            TextChunker(chunk_size=100, overlap=10, break_tolerance=-1)

    def test_large_tolerance_still_advances(self) -> None:
        chunker = TextChunker(chunk_size=20, overlap=5, break_tolerance=500)
        text = "ab " * 100
        chunks = chunker.split(text)
        assert _reconstruct(chunks, 5) == text
        assert all(b.start > a.start for a, b in zip(chunks, chunks[1:]))

    def test_estimated_tokens(self) -> None:
        chunk = TextChunker(chunk_size=100, overlap=10).split("x" * 9)[0]
        assert chunk.estimated_tokens == 3
