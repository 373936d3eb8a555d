"""Unit tests for retrieval.search module."""

import numpy as np
import pytest

from mailrag.errors import EmptyInputError, QueryError
from mailrag.retrieval.search import MAX_MATCH_COUNT, RetrievalEngine

DIM = 8


def _axis(i: int, scale: float = 1.0) -> np.ndarray:
    vector = np.zeros(DIM, dtype=np.float32)
    vector[i] = scale
    return vector


def _email(sender: str, recipients: list[str], cc: list[str] | None = None) -> dict:
    return {
        "subject": "subject",
        "sender": sender,
        "recipient": recipients,
        "cc": cc or [],
        "body": "body text",
    }


@pytest.fixture
def populated(store):
    """
    Two emails with known vectors.

    alice -> bob: chunk A on axis 0, chunk B halfway between axes 0 and 1
    carol -> dave (cc bob): chunk C on axis 0
    """
    first = store.create_email(_email("alice@example.com", ["bob@example.com"]))
    second = store.create_email(
        _email("carol@example.com", ["dave@example.com"], cc=["bob@example.com"])
    )
    ids = {
        "A": store.append_chunk(first, "chunk A", _axis(0), order_index=1),
        "B": store.append_chunk(first, "chunk B", _axis(0) + _axis(1), order_index=2),
        "C": store.append_chunk(second, "chunk C", _axis(0), order_index=1),
    }
    return store, ids, first, second


@pytest.mark.unit
class TestSearch:
    """Tests for RetrievalEngine.search."""

    def test_ranks_by_similarity(self, populated):
        """Test that matches come back best-first with their email and content."""
        store, ids, first, _ = populated
        engine = RetrievalEngine(store)

        results = engine.search(_axis(0), threshold=0.0, limit=10, identity="alice@example.com")

        assert [r.chunk_id for r in results] == [ids["A"], ids["B"]]
        assert results[0].email_id == first
        assert results[0].content == "chunk A"
        assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
        assert results[1].similarity == pytest.approx(np.sqrt(0.5), abs=1e-5)

    def test_recipient_sees_email(self, populated):
        """Test that a primary recipient can search the email."""
        store, ids, _, _ = populated

        results = RetrievalEngine(store).search(
            _axis(0), threshold=0.0, limit=10, identity="bob@example.com"
        )

        assert {r.chunk_id for r in results} == {ids["A"], ids["B"]}

    def test_cc_does_not_grant_access(self, populated):
        """Test that bob, cc'd on the second email, never sees chunk C."""
        store, ids, _, _ = populated

        results = RetrievalEngine(store).search(
            _axis(0), threshold=-1.0, limit=10, identity="bob@example.com"
        )

        assert ids["C"] not in {r.chunk_id for r in results}

    def test_unknown_identity_returns_empty(self, populated):
        """Test that an address on no email gets no results."""
        store, _, _, _ = populated

        assert RetrievalEngine(store).search(
            _axis(0), threshold=-1.0, limit=10, identity="stranger@example.com"
        ) == []

    def test_threshold_is_strict(self, populated):
        """Test that a match exactly at the threshold is excluded."""
        store, ids, _, _ = populated
        engine = RetrievalEngine(store)

        # chunk A is orthogonal to axis 1 (similarity 0.0)
        results = engine.search(_axis(1), threshold=0.0, limit=10, identity="alice@example.com")

        assert [r.chunk_id for r in results] == [ids["B"]]
        assert all(r.similarity > 0.0 for r in results)

    def test_nothing_clears_threshold(self, populated):
        """Test that a threshold above every score yields an empty list."""
        store, _, _, _ = populated

        assert RetrievalEngine(store).search(
            _axis(2), threshold=0.5, limit=10, identity="alice@example.com"
        ) == []

    def test_limit_truncates(self, populated):
        """Test that limit caps the number of results."""
        store, ids, _, _ = populated

        results = RetrievalEngine(store).search(
            _axis(0), threshold=0.0, limit=1, identity="alice@example.com"
        )

        assert [r.chunk_id for r in results] == [ids["A"]]

    @pytest.mark.parametrize("limit", [0, -1, -100])
    def test_non_positive_limit_returns_empty(self, populated, limit):
        """Test that limit <= 0 is treated as an empty request, not an error."""
        store, _, _, _ = populated

        assert RetrievalEngine(store).search(
            _axis(0), threshold=0.0, limit=limit, identity="alice@example.com"
        ) == []

    def test_hard_cap_of_200(self, store):
        """Test that no search returns more than 200 matches."""
        email_id = store.create_email(_email("alice@example.com", ["bob@example.com"]))
        rng = np.random.default_rng(0)
        for order_index in range(1, 251):
            vector = _axis(0) + rng.uniform(0, 0.1, size=DIM).astype(np.float32)
            store.append_chunk(email_id, f"chunk {order_index}", vector, order_index)

        results = RetrievalEngine(store).search(
            _axis(0), threshold=0.0, limit=1000, identity="bob@example.com"
        )

        assert len(results) == MAX_MATCH_COUNT
        scores = [r.similarity for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_identity_domain_case_insensitive(self, populated):
        """Test that the identity is normalised the same way stored addresses are."""
        store, ids, _, _ = populated

        results = RetrievalEngine(store).search(
            _axis(0), threshold=0.0, limit=10, identity="alice@EXAMPLE.com"
        )

        assert ids["A"] in {r.chunk_id for r in results}

    @pytest.mark.parametrize("scale", [1e-25, 1e22])
    def test_extreme_magnitude_vectors(self, store, scale):
        """Test that a stored tiny or huge vector is found by itself at ~1.0."""
        email_id = store.create_email(_email("alice@example.com", ["bob@example.com"]))
        vector = np.ones(DIM, dtype=np.float32) * np.float32(scale)
        chunk_id = store.append_chunk(email_id, "scaled", vector, order_index=1)

        results = RetrievalEngine(store).search(
            vector, threshold=0.5, limit=5, identity="bob@example.com"
        )

        assert [r.chunk_id for r in results] == [chunk_id]
        assert results[0].similarity == pytest.approx(1.0, abs=1e-5)

    def test_accepts_plain_list_vector(self, populated):
        """Test that a list of floats is accepted as the query vector."""
        store, ids, _, _ = populated

        results = RetrievalEngine(store).search(
            _axis(0).tolist(), threshold=0.0, limit=10, identity="alice@example.com"
        )

        assert results[0].chunk_id == ids["A"]

    @pytest.mark.parametrize(
        "vector",
        [
            np.ones(DIM + 1, dtype=np.float32),
            np.ones((2, DIM), dtype=np.float32),
            np.zeros(DIM, dtype=np.float32),
            np.full(DIM, np.inf, dtype=np.float32),
            ["a"] * DIM,
        ],
    )
    def test_malformed_vector_raises(self, populated, vector):
        """Test that bad query vectors raise QueryError."""
        store, _, _, _ = populated

        with pytest.raises(QueryError):
            RetrievalEngine(store).search(vector, threshold=0.0, limit=10, identity="alice@example.com")

    def test_nan_threshold_raises(self, populated):
        """Test that a NaN threshold raises QueryError."""
        store, _, _, _ = populated

        with pytest.raises(QueryError):
            RetrievalEngine(store).search(
                _axis(0), threshold=float("nan"), limit=10, identity="alice@example.com"
            )

    def test_invalid_identity_raises(self, populated):
        """Test that a non-address identity raises QueryError."""
        store, _, _, _ = populated

        with pytest.raises(QueryError):
            RetrievalEngine(store).search(_axis(0), threshold=0.0, limit=10, identity="alice")


@pytest.mark.unit
class TestSearchText:
    """Tests for RetrievalEngine.search_text."""

    def test_embeds_then_searches(self, store, fake_embedder, embed_vector):
        """Test that text queries go through the embedder."""
        email_id = store.create_email(_email("alice@example.com", ["bob@example.com"]))
        chunk_id = store.append_chunk(email_id, "budget", embed_vector("budget"), order_index=1)

        results = RetrievalEngine(store, fake_embedder).search_text(
            "budget", threshold=0.5, limit=5, identity="bob@example.com"
        )

        assert fake_embedder.calls == ["budget"]
        assert results[0].chunk_id == chunk_id
        assert results[0].similarity == pytest.approx(1.0, abs=1e-5)

    def test_empty_text_raises(self, store, fake_embedder):
        """Test that an empty query text is rejected by the embedder."""
        with pytest.raises(EmptyInputError):
            RetrievalEngine(store, fake_embedder).search_text(
                "", threshold=0.0, limit=5, identity="bob@example.com"
            )

    def test_without_embedder_raises(self, store):
        """Test that text search needs an embedder."""
        with pytest.raises(RuntimeError):
            RetrievalEngine(store).search_text("x", threshold=0.0, limit=5, identity="bob@example.com")
