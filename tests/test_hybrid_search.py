"""
Tests for hybrid search (keyword + semantic) and RRF fusion.
"""

import logging

import pytest

from recall.config import SearchConfig
from recall.embedding_client import EmbeddingClient
from recall.retriever import HybridRetriever, clamp_limit, rrf_fuse
from recall.types import Chunk, SearchFilters

from conftest import FailingEmbeddingProvider, VocabEmbeddingProvider

VOCAB = ["attention", "transformer", "gradient", "cooking", "recipe"]


# ---------------------------------------------------------------------------
# RRF fusion unit tests
# ---------------------------------------------------------------------------


class TestRRFFuse:

    def test_single_list(self):
        fused = rrf_fuse([["a", "b"]], k=60)
        assert [i for i, _ in fused] == ["a", "b"]
        assert fused[0][1] == pytest.approx(1 / 61)
        assert fused[1][1] == pytest.approx(1 / 62)

    def test_overlap_boosted(self):
        fused = dict(rrf_fuse([["a", "b"], ["b", "c"]], k=60))
        assert fused["b"] == pytest.approx(1 / 62 + 1 / 61)
        assert fused["b"] > fused["a"] > fused["c"]

    def test_agreement_beats_single_top_rank(self):
        # Second in both lists outranks first in only one
        fused = rrf_fuse([["x", "both"], ["y", "both"]], k=60)
        assert fused[0][0] == "both"

    def test_ties_keep_first_list_order(self):
        fused = rrf_fuse([["kw"], ["sem"]], k=60)
        assert [i for i, _ in fused] == ["kw", "sem"]

    def test_empty(self):
        assert rrf_fuse([[], []]) == []

    def test_k_changes_scale(self):
        fused = rrf_fuse([["a"]], k=0)
        assert fused[0][1] == pytest.approx(1.0)


class TestClampLimit:

    def test_default(self):
        assert clamp_limit(None, 10, 20) == 10

    def test_bounds(self):
        assert clamp_limit(0, 10, 20) == 1
        assert clamp_limit(-5, 10, 20) == 1
        assert clamp_limit(500, 10, 20) == 20
        assert clamp_limit(2, 10, 20, minimum=3) == 3


# ---------------------------------------------------------------------------
# Vault-level hybrid search
# ---------------------------------------------------------------------------


@pytest.fixture
def vocab_vault(vault_factory):
    v = vault_factory(VocabEmbeddingProvider(VOCAB))
    v.put("a.md", "Attention is all you need. The transformer uses attention.",
          {"type": "transcript", "tags": ["ml"]})
    v.put("b.md", "Transformer models scale well.", {"type": "article", "tags": ["ml"]})
    v.put("c.md", "A cooking recipe for bread.", {"type": "article", "tags": ["food"]})
    return v


class TestHybridSearch:

    def test_documents_embedded_inline(self, vocab_vault):
        assert vocab_vault.get("a.md").status == "complete"

    def test_match_in_both_legs_ranks_first(self, vocab_vault):
        results = vocab_vault.search("attention")
        assert results[0].path == "a.md"
        assert results[0].score == pytest.approx(2 / 61)
        assert all(r.score < results[0].score for r in results[1:])

    def test_semantic_finds_without_exact_phrase(self, vocab_vault):
        results = vocab_vault.search("attention transformer")
        assert [r.path for r in results[:2]] == ["a.md", "b.md"]

    def test_scores_descending(self, vocab_vault):
        results = vocab_vault.search("transformer")
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_filters_apply_to_both_legs(self, vocab_vault):
        results = vocab_vault.search(
            "attention transformer", filters=SearchFilters(file_type="article"),
        )
        paths = [r.path for r in results]
        assert "a.md" not in paths
        assert paths[0] == "b.md"

    def test_tag_filter(self, vocab_vault):
        results = vocab_vault.search("recipe", filters=SearchFilters(tags=("food",)))
        assert [r.path for r in results] == ["c.md"]

    def test_limit(self, vocab_vault):
        assert len(vocab_vault.search("attention", limit=1)) == 1

    def test_result_fields(self, vocab_vault):
        top = vocab_vault.search("attention")[0]
        assert top.tags == ["ml"]
        assert top.status == "complete"
        assert top.snippet.startswith("Attention is all")
        assert top.updated_at

    def test_snippet_bounded(self, vault_factory):
        v = vault_factory(VocabEmbeddingProvider(VOCAB))
        v.put("long.md", "gradient " * 100)
        result = v.search("gradient")[0]
        assert len(result.snippet) == 150

    def test_deleted_document_not_returned(self, vocab_vault):
        vocab_vault.delete("a.md")
        assert "a.md" not in [r.path for r in vocab_vault.search("attention transformer")]

    def test_empty_query_without_filters_rejected(self, vocab_vault):
        with pytest.raises(ValueError):
            vocab_vault.search("")
        with pytest.raises(ValueError):
            vocab_vault.search("   ", filters=SearchFilters())

    def test_empty_query_with_filters_browses(self, vocab_vault):
        results = vocab_vault.search("", filters=SearchFilters(tags=("ml",)))
        assert sorted(r.path for r in results) == ["a.md", "b.md"]
        assert all(r.score is None for r in results)
        # Newest first
        assert results[0].path == "b.md"


class TestKeywordOnly:

    def test_works_without_embeddings(self, keyword_vault):
        keyword_vault.put("a.md", "Attention please.")
        keyword_vault.put("b.md", "Nothing relevant.")
        results = keyword_vault.search("attention")
        assert [r.path for r in results] == ["a.md"]
        assert results[0].status == "pending"
        assert results[0].score == pytest.approx(1 / 61)

    def test_semantic_failure_degrades_to_keyword(self, doc_store, chunk_store, caplog):
        doc, _ = doc_store.create_or_update("a.md", "keyword body")
        chunk_store.replace_chunks(doc.id, [Chunk(doc.id, 0, "keyword body", [1.0, 0.0])])
        retriever = HybridRetriever(
            doc_store, chunk_store,
            EmbeddingClient(provider=FailingEmbeddingProvider()),
            SearchConfig(),
        )

        with caplog.at_level(logging.WARNING, logger="recall.retriever"):
            results = retriever.search("keyword")

        assert [r.path for r in results] == ["a.md"]
        assert "keyword results only" in caplog.text

    def test_semantic_only_hit_uses_chunk_snippet(self, doc_store, chunk_store):
        doc, _ = doc_store.create_or_update("a.md", "full body text")
        chunk_store.replace_chunks(doc.id, [Chunk(doc.id, 0, "alpha", [1.0] * 5)])
        retriever = HybridRetriever(
            doc_store, chunk_store,
            EmbeddingClient(provider=VocabEmbeddingProvider(VOCAB)),
            SearchConfig(),
        )
        results = retriever.search("attention")
        assert [r.path for r in results] == ["a.md"]
        assert results[0].snippet == "alpha"

    def test_unrelated_query_returns_nothing(self, doc_store, chunk_store):
        doc, _ = doc_store.create_or_update("a.md", "full body text")
        chunk_store.replace_chunks(doc.id, [Chunk(doc.id, 0, "alpha", [1.0, 0.0, 0.0, 0.0, 0.0])])
        other, _ = doc_store.create_or_update("b.md", "other body")
        chunk_store.replace_chunks(other.id, [Chunk(other.id, 0, "beta", [-1.0, 0.0, 0.0, 0.0, 0.0])])
        retriever = HybridRetriever(
            doc_store, chunk_store,
            EmbeddingClient(provider=VocabEmbeddingProvider(VOCAB)),
            SearchConfig(),
        )
        # Zero similarity to both; "attention" is negative for b.md
        assert retriever.search("gradient") == []
        assert [r.path for r in retriever.search("attention")] == ["a.md"]
