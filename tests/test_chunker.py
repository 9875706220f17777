# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the sentence-aware character chunking without external dependencies.
# No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from research_rag.services.chunker import chunk_text

SENTENCE = "Revenue grew by fifteen percent year over year in the region. "


def _covers_in_order(text: str, chunks: list[str]) -> bool:
    """Each chunk appears in `text` at or after the previous chunk's start."""
    position = 0
    for chunk in chunks:
        found = text.find(chunk, position)
        if found == -1:
            return False
        position = found
    return True


class TestChunkText:
    """Tests for chunk_text()."""

    def test_empty_text_returns_no_chunks(self):
        assert chunk_text("") == []

    def test_text_shorter_than_min_length_is_dropped(self):
        assert chunk_text("Too short to keep.") == []

    def test_short_text_is_one_chunk(self):
        text = SENTENCE * 3
        assert chunk_text(text) == [text.strip()]

    def test_long_text_produces_multiple_chunks(self):
        text = SENTENCE * 100
        chunks = chunk_text(text)
        assert len(chunks) > 1
        assert all(len(chunk) <= 1000 for chunk in chunks)

    def test_chunks_end_on_sentence_boundaries(self):
        text = SENTENCE * 100
        chunks = chunk_text(text)
        for chunk in chunks[:-1]:
            assert chunk.endswith(".")

    def test_chunks_are_in_document_order(self):
        text = "".join(f"Sentence number {i} talks about topic {i}. " for i in range(300))
        chunks = chunk_text(text)
        assert _covers_in_order(text, chunks)
        assert "Sentence number 0 " in chunks[0]
        assert "Sentence number 299 " in chunks[-1]

    def test_consecutive_chunks_overlap(self):
        text = "".join(f"Fact {i} is recorded here. " for i in range(200))
        chunks = chunk_text(text, chunk_size=400, overlap=100)
        for first, second in zip(chunks, chunks[1:]):
            assert second[:20] in first

    def test_no_chunk_shorter_than_min_length(self):
        text = SENTENCE * 40 + "Tail."
        for chunk in chunk_text(text, min_length=50):
            assert len(chunk) >= 50

    def test_max_chunks_caps_output(self):
        text = SENTENCE * 500
        chunks = chunk_text(text, max_chunks=20)
        assert len(chunks) == 20

    def test_text_without_breaks_is_split_at_window_size(self):
        text = "x" * 2500
        chunks = chunk_text(text, chunk_size=1000, overlap=200)
        assert chunks[0] == "x" * 1000
        assert len(chunks) == 3

    @pytest.mark.parametrize("overlap", [-50, 0, 900, 1000, 5000])
    def test_any_overlap_terminates(self, overlap):
        text = SENTENCE * 200
        chunks = chunk_text(text, chunk_size=1000, overlap=overlap)
        assert 0 < len(chunks) < len(text)

    def test_non_positive_chunk_size_rejected(self):
        with pytest.raises(ValueError):
            chunk_text("anything", chunk_size=0)
