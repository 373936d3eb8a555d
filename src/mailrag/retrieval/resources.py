"""
Singleton resource management for the document store and embedder.

Provides cached instances of resources that should only be created once
per application lifecycle. Uses the same @lru_cache pattern as the
config.py settings singleton.

Usage:
    # In API handlers (via Depends) or CLI commands
    store = get_document_store()  # First call opens the DB and loads the index
    engine = get_retrieval_engine()

    # In API startup (explicit initialization)
    status = initialize_resources()

    # In tests (reset cache)
    clear_resource_cache()
"""

import logging
from functools import lru_cache

from mailrag.config import settings
from mailrag.retrieval.embeddings import Embedder, create_embedder
from mailrag.retrieval.ingestion import IngestionOrchestrator
from mailrag.retrieval.search import RetrievalEngine
from mailrag.retrieval.store import DocumentStore

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    """
    Get or create the global DocumentStore.

    The first call opens the SQLite database at settings.database_path
    and rebuilds the similarity index from the stored vectors.
    """
    logger.info(f"Opening document store at {settings.database_path}")
    store = DocumentStore(settings.database_path, dimension=settings.embedding_dimension)
    logger.info(f"Document store ready ({store.index.size} indexed chunks)")
    return store


@lru_cache(maxsize=1)
def get_embedder() -> Embedder:
    """Get or create the global embedder for the configured provider."""
    logger.info(
        f"Initializing {settings.embedding_provider} embedder for model: {settings.embedding_model}"
    )
    return create_embedder(settings)


def get_ingestion_orchestrator() -> IngestionOrchestrator:
    """
    Build an orchestrator over the shared store and embedder.

    Cheap to create per request; only the store and embedder are shared.
    """
    return IngestionOrchestrator(get_document_store(), get_embedder())


def get_retrieval_engine() -> RetrievalEngine:
    """Build a retrieval engine over the shared store and embedder."""
    return RetrievalEngine(get_document_store(), get_embedder())


def initialize_resources() -> dict[str, bool]:
    """
    Explicitly initialize all resources for eager loading.

    Returns:
        dict: Status of each resource initialization

    Raises:
        RuntimeError: If any resource fails to initialize
    """
    status = {}

    try:
        get_document_store()
        status["document_store"] = True
    except Exception as e:
        status["document_store"] = False
        raise RuntimeError(f"Failed to open document store: {e}") from e

    try:
        get_embedder()
        status["embedder"] = True
    except Exception as e:
        status["embedder"] = False
        raise RuntimeError(f"Failed to create embedder: {e}") from e

    return status


def clear_resource_cache() -> None:
    """
    Clear all cached resources, closing the store if one was opened.

    Used in tests to reset state between test cases.
    """
    if get_document_store.cache_info().currsize:
        get_document_store().close()
    get_document_store.cache_clear()
    get_embedder.cache_clear()
    logger.debug("Resource cache cleared")
