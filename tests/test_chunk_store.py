"""
Tests for the SQLite chunk store.
"""

import sqlite3

import pytest

from recall.chunk_store import cosine_similarity
from recall.errors import ChunkPersistenceError, ClaimLostError
from recall.types import Chunk


def _chunks(doc_id, texts, embeddings=None):
    embeddings = embeddings or [None] * len(texts)
    return [Chunk(doc_id, i, t, e) for i, (t, e) in enumerate(zip(texts, embeddings))]


@pytest.fixture
def doc_id(doc_store):
    doc, _ = doc_store.create_or_update("a.md", "body")
    return doc.id


class TestCosine:

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestReplace:

    def test_insert_and_read_back(self, chunk_store, doc_id):
        written = chunk_store.replace_chunks(
            doc_id, _chunks(doc_id, ["zero", "one"], [[1.0, 0.0], [0.0, 1.0]])
        )
        assert written == 2
        stored = chunk_store.get_chunks(doc_id)
        assert [c.chunk_index for c in stored] == [0, 1]
        assert stored[0].text == "zero"
        assert stored[1].embedding == [0.0, 1.0]
        assert chunk_store.count_chunks(doc_id) == 2

    def test_replace_swaps_whole_set(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b", "c"]))
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["x"]))
        assert [c.text for c in chunk_store.get_chunks(doc_id)] == ["x"]

    def test_empty_set_clears(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a"]))
        assert chunk_store.replace_chunks(doc_id, []) == 0
        assert chunk_store.get_chunks(doc_id) == []

    def test_non_contiguous_rejected(self, chunk_store, doc_id):
        bad = [Chunk(doc_id, 0, "a"), Chunk(doc_id, 2, "c")]
        with pytest.raises(ValueError):
            chunk_store.replace_chunks(doc_id, bad)

    def test_unknown_document_rejected_atomically(self, chunk_store):
        with pytest.raises(ChunkPersistenceError):
            chunk_store.replace_chunks("ghost", _chunks("ghost", ["a"]))
        assert chunk_store.get_chunks("ghost") == []

    def test_failed_write_keeps_previous_set(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["old0", "old1"]))
        conn = chunk_store._conn

        class FlakyConnection:
            """Delegates to the real connection but fails the batch insert."""

            def __getattr__(self, name):
                return getattr(conn, name)

            def executemany(self, *args, **kwargs):
                raise sqlite3.OperationalError("disk I/O error")

        chunk_store._conn = FlakyConnection()
        try:
            with pytest.raises(ChunkPersistenceError):
                chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["new0"]))
        finally:
            chunk_store._conn = conn
        assert [c.text for c in chunk_store.get_chunks(doc_id)] == ["old0", "old1"]

    def test_claimed_write_needs_live_claim(self, doc_store, chunk_store, doc_id):
        claimed = doc_store.claim_for_processing(doc_id)
        assert chunk_store.replace_chunks(
            doc_id, _chunks(doc_id, ["a"]), claimed_hash=claimed.content_hash,
        ) == 1

        doc_store.create_or_update("a.md", "replaced body")
        with pytest.raises(ClaimLostError):
            chunk_store.replace_chunks(
                doc_id, _chunks(doc_id, ["stale"]), claimed_hash=claimed.content_hash,
            )
        assert [c.text for c in chunk_store.get_chunks(doc_id)] == ["a"]

    def test_claimed_write_rejected_when_not_processing(self, doc_store, chunk_store, doc_id):
        doc = doc_store.get(doc_id)
        with pytest.raises(ClaimLostError):
            chunk_store.replace_chunks(
                doc_id, _chunks(doc_id, ["a"]), claimed_hash=doc.content_hash,
            )
        assert chunk_store.count_chunks(doc_id) == 0

    def test_document_delete_cascades(self, doc_store, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b"]))
        doc_store.delete(doc_id)
        assert chunk_store.get_chunks(doc_id) == []

    def test_delete_chunks(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b"]))
        assert chunk_store.delete_chunks(doc_id) == 2
        assert chunk_store.count_chunks(doc_id) == 0


class TestReads:

    def test_get_chunks_by_index(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b", "c", "d"]))
        got = chunk_store.get_chunks_by_index(doc_id, [3, 1, 99])
        assert [c.chunk_index for c in got] == [1, 3]
        assert chunk_store.get_chunks_by_index(doc_id, []) == []

    def test_keyword_search_ranks_by_occurrences(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, [
            "nothing", "Gradient once", "gradient gradient GRADIENT",
        ]))
        hits = chunk_store.keyword_search("gradient", document_id=doc_id)
        assert [c.chunk_index for c in hits] == [2, 1]
        assert hits[0].score == 3.0

    def test_keyword_search_folds_non_ascii_case(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["Élan vital", "elan"]))
        hits = chunk_store.keyword_search("élan", document_id=doc_id)
        assert [c.chunk_index for c in hits] == [0]

    def test_keyword_search_blank_query(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a"]))
        assert chunk_store.keyword_search("   ") == []

    def test_vector_search(self, chunk_store, doc_store, doc_id):
        other, _ = doc_store.create_or_update("b.md", "other")
        chunk_store.replace_chunks(doc_id, _chunks(
            doc_id, ["x", "y"], [[1.0, 0.0], [0.0, 1.0]],
        ))
        chunk_store.replace_chunks(other.id, _chunks(
            other.id, ["xy"], [[1.0, 1.0]],
        ))
        hits = chunk_store.vector_search([1.0, 0.1], k=3)
        assert [(c.document_id, c.chunk_index) for c in hits] == [
            (doc_id, 0), (other.id, 0), (doc_id, 1),
        ]
        assert hits[0].score > hits[1].score > hits[2].score

        scoped = chunk_store.vector_search([1.0, 0.1], document_ids={other.id})
        assert [c.document_id for c in scoped] == [other.id]
        assert chunk_store.vector_search([1.0, 0.1], document_ids=set()) == []
        assert len(chunk_store.vector_search([1.0, 0.1], document_id=doc_id, k=None)) == 2

    def test_vector_search_skips_unembedded(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b"], [[1.0], None]))
        assert [c.chunk_index for c in chunk_store.vector_search([1.0])] == [0]

    def test_stats(self, chunk_store, doc_id):
        chunk_store.replace_chunks(doc_id, _chunks(doc_id, ["a", "b"], [[1.0], None]))
        assert chunk_store.stats() == {
            "chunks": 2, "embedded_chunks": 1, "chunked_documents": 1,
        }
