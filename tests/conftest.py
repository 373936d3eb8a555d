"""
Pytest configuration and shared fixtures.

Provides common fixtures for:
    - Configuration with test values
    - A deterministic fake embedder
    - Sample email payloads
    - Temporary SQLite document stores
"""

import hashlib
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import numpy as np
import pytest

from mailrag.errors import EmptyInputError, ProviderError

TEST_DIMENSION = 8


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """Provide test settings without requiring .env file."""
    with patch.dict(
        "os.environ",
        {
            "OPENAI_API_KEY": "test-api-key",
            "EMBEDDING_MODEL": "text-embedding-3-small",
            "EMBEDDING_DIMENSION": "1536",
            "CHUNK_SIZE": "2000",
            "DATABASE_PATH": "data/test.db",
        },
    ):
        from mailrag.config import Settings
        yield Settings()


# =============================================================================
# Fake Embedder
# =============================================================================

class FakeEmbedder:
    """
    Deterministic embedder: the same text always maps to the same vector.

    ``fail_on`` lists 1-based call numbers that raise ProviderError.
    """

    def __init__(self, dimension: int = TEST_DIMENSION, fail_on: tuple[int, ...] = ()) -> None:
        self.dimension = dimension
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    def embed(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed empty text")

        self.calls.append(text)
        if len(self.calls) in self.fail_on:
            raise ProviderError("simulated provider outage", status_code=503)

        return vector_for(text, self.dimension)


def vector_for(text: str, dimension: int = TEST_DIMENSION) -> np.ndarray:
    """The vector FakeEmbedder returns for ``text``."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
    rng = np.random.default_rng(seed)
    return rng.normal(size=dimension).astype(np.float32)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    """Provide a deterministic embedder with the test dimension."""
    return FakeEmbedder()


@pytest.fixture
def failing_embedder():
    """Provide a factory for embedders that fail on given call numbers."""
    def _make(*fail_on: int) -> FakeEmbedder:
        return FakeEmbedder(fail_on=fail_on)
    return _make


@pytest.fixture
def embed_vector():
    """Provide the function mapping text to its fake embedding."""
    return vector_for


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def sample_email() -> dict:
    """Provide a valid ingestion payload."""
    return {
        "subject": "Q3 budget review",
        "sender": "alice@example.com",
        "recipient": ["bob@example.com"],
        "cc": ["carol@example.com"],
        "bcc": ["dave@example.com"],
        "body": "Hi Bob, the Q3 budget review is moved to Thursday. "
        "Please bring the updated forecast and the hiring plan.",
    }


@pytest.fixture
def long_body() -> str:
    """Provide a 3499-character body of 700 four-letter words."""
    return " ".join(["word"] * 700)


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Provide a path for a temporary SQLite database."""
    return tmp_path / "db" / "mailrag.db"


@pytest.fixture
def store(tmp_db_path: Path) -> Generator:
    """Provide an empty document store with the test dimension."""
    from mailrag.retrieval.store import DocumentStore

    document_store = DocumentStore(tmp_db_path, dimension=TEST_DIMENSION)
    yield document_store
    document_store.close()
