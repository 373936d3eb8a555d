"""
Integration tests for the ingestion and retrieval pipeline.

These tests drive the orchestrator, document store, similarity index and
retrieval engine together against a real SQLite file.
"""

import pytest

from mailrag.errors import IngestionError, ValidationError
from mailrag.retrieval.ingestion import IngestionOrchestrator
from mailrag.retrieval.search import RetrievalEngine
from mailrag.retrieval.store import DocumentStore


@pytest.mark.integration
class TestIngestThenSearch:
    """End-to-end ingestion followed by retrieval."""

    def test_long_body_round_trip(self, store, fake_embedder, embed_vector, sample_email, long_body):
        """A 3499-character body yields two chunks; each is found by its own vector."""
        sample_email["body"] = long_body
        orchestrator = IngestionOrchestrator(store, fake_embedder, chunk_size=2000)

        result = orchestrator.ingest(sample_email)

        chunks = store.get_chunks(result.email_id)
        assert result.chunk_count == 2
        assert [c.order_index for c in chunks] == [1, 2]
        assert all(len(c.content) <= 2000 for c in chunks)
        assert " ".join(c.content for c in chunks) == long_body

        engine = RetrievalEngine(store, fake_embedder)
        for chunk in chunks:
            matches = engine.search(
                embed_vector(chunk.content), threshold=0.5, limit=5, identity="bob@example.com"
            )
            assert matches[0].chunk_id == chunk.id
            assert matches[0].similarity == pytest.approx(1.0, abs=1e-5)

    def test_invalid_email_writes_nothing(self, store, fake_embedder, sample_email):
        """An email without recipients is rejected before anything is stored."""
        sample_email["recipient"] = []

        with pytest.raises(ValidationError):
            IngestionOrchestrator(store, fake_embedder).ingest(sample_email)

        assert store.count_chunks() == 0
        assert store.get_email(1) is None

    def test_partial_failure_then_resume(self, store, failing_embedder, fake_embedder, sample_email):
        """A failure on chunk 2 of 3 keeps chunk 1, and resume completes the email."""
        sample_email["body"] = " ".join(["alpha"] * 30)  # 179 chars -> 3 chunks at budget 60
        failing = IngestionOrchestrator(store, failing_embedder(2), chunk_size=60, max_attempts=1)

        with pytest.raises(IngestionError) as exc_info:
            failing.ingest(sample_email)

        email_id = exc_info.value.email_id
        assert exc_info.value.last_order_index == 1
        assert [c.order_index for c in store.get_chunks(email_id)] == [1]

        result = IngestionOrchestrator(store, fake_embedder, chunk_size=60).resume(email_id)

        assert result.chunks_written == 2
        assert [c.order_index for c in store.get_chunks(email_id)] == [1, 2, 3]

    def test_identity_isolation_across_emails(self, store, fake_embedder, embed_vector, sample_email):
        """Each participant only ever sees chunks of their own emails."""
        orchestrator = IngestionOrchestrator(store, fake_embedder, chunk_size=2000)
        first = orchestrator.ingest(sample_email).email_id
        other = dict(sample_email, sender="erin@example.com", recipient=["frank@example.com"], cc=[], bcc=[])
        second = orchestrator.ingest(other).email_id

        engine = RetrievalEngine(store, fake_embedder)
        query = embed_vector(sample_email["body"])

        def visible(identity):
            return {m.email_id for m in engine.search(query, threshold=-1.0, limit=200, identity=identity)}

        assert visible("bob@example.com") == {first}
        assert visible("frank@example.com") == {second}
        assert visible("carol@example.com") == set()

    def test_delete_then_reopen(self, tmp_db_path, fake_embedder, embed_vector, sample_email):
        """Deleted chunks stay gone after the index is rebuilt from disk."""
        with DocumentStore(tmp_db_path, dimension=8) as first_store:
            orchestrator = IngestionOrchestrator(first_store, fake_embedder, chunk_size=2000)
            kept = orchestrator.ingest(sample_email).email_id
            dropped = orchestrator.ingest(sample_email).email_id
            first_store.delete_email(dropped)

        with DocumentStore(tmp_db_path, dimension=8) as reopened:
            matches = RetrievalEngine(reopened).search(
                embed_vector(" ".join(sample_email["body"].split())),
                threshold=0.5,
                limit=10,
                identity="alice@example.com",
            )

        assert [m.email_id for m in matches] == [kept]
