"""
Tests for sentence-aware chunking.
"""

import pytest

from recall.chunker import Chunker, chunk_text


def _sentences(n: int, width: int = 100) -> str:
    """n sentences, each exactly ``width`` chars including the trailing space."""
    out = []
    for i in range(n):
        head = f"Sentence {i:04d} "
        out.append(head + "x" * (width - len(head) - 2) + ". ")
    return "".join(out)


class TestBasics:

    def test_empty_text_yields_no_chunks(self):
        assert Chunker().chunk("") == []

    def test_short_text_is_one_chunk(self):
        assert Chunker().chunk("Hello world.") == ["Hello world."]

    def test_exactly_max_size_is_one_chunk(self):
        text = "a" * 6000
        chunks = Chunker().chunk(text)
        assert chunks == [text]

    def test_one_over_max_size_splits(self):
        text = "a" * 6001
        chunks = Chunker().chunk(text)
        assert len(chunks) == 2
        assert all(len(c) <= 6000 for c in chunks)

    def test_deterministic(self):
        text = _sentences(300)
        assert Chunker().chunk(text) == Chunker().chunk(text)

    def test_convenience_wrapper_matches_class(self):
        text = _sentences(200)
        assert chunk_text(text) == Chunker().chunk(text)


class TestBounds:

    @pytest.mark.parametrize("length", [6001, 12000, 25000, 61234])
    def test_no_chunk_exceeds_max(self, length):
        text = ("word " * (length // 5 + 1))[:length]
        for c in Chunker().chunk(text):
            assert len(c) <= 6000

    def test_chunks_cover_the_whole_text(self):
        text = _sentences(250)
        chunker = Chunker()
        spans = chunker.chunk_spans(text)
        assert spans[0][0] == 0
        assert spans[-1][1] == len(text)
        for (s1, e1), (s2, e2) in zip(spans, spans[1:]):
            assert s2 < e1  # overlapping, no gaps
            assert s2 > s1  # strictly advancing

    def test_neighbours_share_overlap(self):
        text = _sentences(250)
        spans = Chunker().chunk_spans(text)
        for (_, e1), (s2, _) in zip(spans, spans[1:]):
            assert e1 - s2 == 500

    def test_estimate(self):
        chunker = Chunker()
        assert chunker.estimate_chunks("") == 0
        assert chunker.estimate_chunks("a" * 6000) == 1
        assert chunker.estimate_chunks("a" * 6001) == 2
        assert chunker.estimate_chunks("a" * 30000) == 5


class TestBoundaries:

    def test_cuts_after_sentence_boundary(self):
        text = _sentences(120)
        chunks = Chunker().chunk(text)
        assert len(chunks) > 1
        for c in chunks[:-1]:
            assert c.endswith(". ")

    def test_paragraph_break_is_a_boundary(self):
        para = "y" * 5700
        text = para + "\n\n" + "z" * 3000
        first = Chunker().chunk(text)[0]
        assert first == para + "\n\n"

    def test_no_boundary_cuts_at_max(self):
        text = "q" * 13000
        chunks = Chunker().chunk(text)
        assert len(chunks[0]) == 6000
        assert chunks[1].startswith("q")

    def test_boundary_outside_window_is_ignored(self):
        # Only period is 1000 chars before the window edge
        text = "a" * 5000 + ". " + "b" * 4000
        first = Chunker().chunk(text)[0]
        assert len(first) == 6000


class TestParameters:

    def test_custom_sizes(self):
        chunker = Chunker(max_chunk_size=100, overlap=10, boundary_window=20)
        chunks = chunker.chunk("abcdefghij" * 50)
        assert all(len(c) <= 100 for c in chunks)
        assert len(chunks) == 6

    def test_rejects_overlap_not_below_size(self):
        with pytest.raises(ValueError):
            Chunker(max_chunk_size=100, overlap=100)

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            Chunker(max_chunk_size=0)

    def test_zero_overlap(self):
        chunker = Chunker(max_chunk_size=10, overlap=0, boundary_window=0)
        assert chunker.chunk("a" * 25) == ["a" * 10, "a" * 10, "a" * 5]
