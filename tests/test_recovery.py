"""
Tests for startup recovery of abandoned documents (Tier 4).
"""

import threading
import time
from datetime import datetime, timedelta, timezone

from recall.chunker import Chunker
from recall.config import ProcessingConfig
from recall.embedding_client import EmbeddingClient
from recall.processing import EmbeddingPipeline, ProcessingOutcome

from conftest import FailingEmbeddingProvider, MockEmbeddingProvider


def _later(minutes: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def _pipeline(doc_store, chunk_store, provider=None, **config):
    client = EmbeddingClient(provider=provider) if provider is not None else EmbeddingClient()
    chunker = Chunker(max_chunk_size=100, overlap=0, boundary_window=0)
    return EmbeddingPipeline(doc_store, chunk_store, client, chunker, ProcessingConfig(**config))


class TestRecoverStale:

    def test_recent_documents_left_alone(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        doc, _ = doc_store.create_or_update("a.md", "fresh")

        report = pipeline.recover_stale()

        assert report.results == []
        assert doc_store.get(doc.id).status == "pending"

    def test_stale_pending_recovered(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        doc, _ = doc_store.create_or_update("a.md", "abandoned")

        report = pipeline.recover_stale(now=_later(6))

        assert [r.outcome for r in report.results] == [ProcessingOutcome.COMPLETE]
        assert doc_store.get(doc.id).status == "complete"
        assert chunk_store.count_chunks(doc.id) == 1

    def test_failed_documents_recovered(self, doc_store, chunk_store):
        doc, _ = doc_store.create_or_update("a.md", "flaky")
        _pipeline(doc_store, chunk_store, FailingEmbeddingProvider()).process_pending()
        assert doc_store.get(doc.id).status == "failed"

        report = _pipeline(doc_store, chunk_store, MockEmbeddingProvider()).recover_stale(
            now=_later(6)
        )

        assert report.count(ProcessingOutcome.COMPLETE) == 1
        assert doc_store.get(doc.id).status == "complete"

    def test_batch_bounded(self, doc_store, chunk_store):
        pipeline = _pipeline(
            doc_store, chunk_store, MockEmbeddingProvider(), recovery_batch=3,
        )
        for i in range(5):
            doc_store.create_or_update(f"doc{i}.md", f"body {i}")

        report = pipeline.recover_stale(now=_later(6))

        assert len(report.results) == 3
        remaining = {d.path for d in doc_store.list_pending()}
        # Oldest first: the two newest are still pending
        assert remaining == {"doc3.md", "doc4.md"}

    def test_stop_leaves_unstarted_documents_pending(self, doc_store, chunk_store):
        provider = MockEmbeddingProvider()
        pipeline = _pipeline(doc_store, chunk_store, provider)
        for i in range(3):
            doc_store.create_or_update(f"doc{i}.md", f"body {i}")
        stop = threading.Event()
        stop.set()

        report = pipeline.recover_stale(now=_later(6), stop=stop)

        assert report.count(ProcessingOutcome.DEFERRED) == 3
        assert provider.embed_calls == 0
        assert len(doc_store.list_pending()) == 3

    def test_large_documents_not_candidates(self, doc_store, chunk_store):
        pipeline = _pipeline(
            doc_store, chunk_store, MockEmbeddingProvider(), inline_threshold=2,
        )
        doc, _ = doc_store.create_or_update("big.md", "x" * 500)

        report = pipeline.recover_stale(now=_later(6))

        assert report.results == []
        assert doc_store.get(doc.id).status == "pending"

    def test_large_backlog_does_not_starve_small_documents(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        for i in range(10):
            doc_store.create_or_update(f"library/long{i}.md", "x" * 4000)
        small, _ = doc_store.create_or_update("tiny.md", "tiny note")

        report = pipeline.recover_stale(now=_later(30))

        assert [r.document_id for r in report.results] == [small.id]
        assert report.count(ProcessingOutcome.COMPLETE) == 1
        assert doc_store.get(small.id).status == "complete"
        assert len(doc_store.list_pending()) == 10

    def test_recovery_failure_returns_to_pending(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, FailingEmbeddingProvider())
        doc, _ = doc_store.create_or_update("a.md", "doomed")

        report = pipeline.recover_stale(now=_later(6))

        assert report.count(ProcessingOutcome.FAILED) == 1
        assert doc_store.get(doc.id).status == "pending"

    def test_crashed_claim_released_and_recovered(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        doc, _ = doc_store.create_or_update("a.md", "half done")
        doc_store.claim_for_processing(doc.id)  # worker died holding the claim

        report = pipeline.recover_stale(now=_later(11))

        assert report.released_claims == 1
        assert report.count(ProcessingOutcome.COMPLETE) == 1
        assert doc_store.get(doc.id).status == "complete"

    def test_live_claim_not_released(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        doc, _ = doc_store.create_or_update("a.md", "in flight")
        doc_store.claim_for_processing(doc.id)

        report = pipeline.recover_stale(now=_later(6))

        assert report.released_claims == 0
        assert doc_store.get(doc.id).status == "processing"

    def test_no_embedder_only_releases_claims(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store)
        doc, _ = doc_store.create_or_update("a.md", "stuck")
        doc_store.claim_for_processing(doc.id)

        report = pipeline.recover_stale(now=_later(11))

        assert report.released_claims == 1
        assert report.results == []
        assert doc_store.get(doc.id).status == "pending"

    def test_report_summary(self, doc_store, chunk_store):
        pipeline = _pipeline(doc_store, chunk_store, MockEmbeddingProvider())
        doc_store.create_or_update("a.md", "one")
        summary = pipeline.recover_stale(now=_later(6)).as_dict()
        assert summary["candidates"] == 1
        assert summary["complete"] == 1
        assert summary["released_claims"] == 0


class TestStartupRecovery:

    def test_vault_recovers_in_background(self, tmp_path, vault_factory):
        from recall.api import Vault
        from recall.config import StoreConfig

        # Seed a pending document with no embedder, then reopen with one
        seed = vault_factory()
        seed.put("a.md", "left behind")
        seed.close()

        config = StoreConfig(path=tmp_path)
        config.processing.stale_minutes = 0
        reopened = Vault(
            config=config,
            embedding_client=EmbeddingClient(provider=MockEmbeddingProvider()),
            recover_on_start=True,
        )
        try:
            report = reopened.wait_for_recovery(timeout=10)
            assert report is not None
            assert report.count(ProcessingOutcome.COMPLETE) == 1
            assert reopened.get("a.md").status == "complete"
        finally:
            reopened.close()

    def test_startup_recovery_does_not_block_open(self, tmp_path, vault_factory):
        from recall.api import Vault
        from recall.config import StoreConfig

        class SlowProvider(MockEmbeddingProvider):
            def embed(self, text):
                time.sleep(0.5)
                return super().embed(text)

        seed = vault_factory()
        seed.put("a.md", "slow one")
        seed.close()

        config = StoreConfig(path=tmp_path)
        config.processing.stale_minutes = 0
        start = time.monotonic()
        vault = Vault(
            config=config,
            embedding_client=EmbeddingClient(provider=SlowProvider()),
            recover_on_start=True,
        )
        opened_in = time.monotonic() - start
        try:
            assert opened_in < 0.5
            vault.wait_for_recovery(timeout=10)
            assert vault.get("a.md").status == "complete"
        finally:
            vault.close()

    def test_close_waits_for_recovery_and_stops_it(self, tmp_path, vault_factory):
        from recall.api import Vault
        from recall.config import StoreConfig

        started = threading.Event()
        release = threading.Event()

        class GatedProvider(MockEmbeddingProvider):
            def embed(self, text):
                started.set()
                release.wait(10)
                return super().embed(text)

        seed = vault_factory()
        seed.put("a.md", "first")
        seed.put("b.md", "second")
        seed.close()

        config = StoreConfig(path=tmp_path)
        config.processing.stale_minutes = 0
        config.processing.recovery_workers = 1
        vault = Vault(
            config=config,
            embedding_client=EmbeddingClient(provider=GatedProvider()),
            recover_on_start=True,
        )
        assert started.wait(10)

        closer = threading.Thread(target=vault.close)
        closer.start()
        closer.join(0.3)
        assert closer.is_alive()  # still waiting on the document in flight

        release.set()
        closer.join(10)
        assert not closer.is_alive()

        report = vault.last_recovery
        assert report.count(ProcessingOutcome.COMPLETE) == 1
        assert report.count(ProcessingOutcome.DEFERRED) == 1

        reopened = vault_factory()
        assert sorted(reopened.get(p).status for p in ("a.md", "b.md")) == ["complete", "pending"]
