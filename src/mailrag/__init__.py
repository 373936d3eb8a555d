"""
mailrag: embedding search over stored email.

This package ingests plain emails, splits their bodies into size-bounded
chunks, embeds every chunk, and answers similarity queries restricted to
the emails a given address sent or received.

Key Components:
    - retrieval: Chunking, embedding, SQLite storage, FAISS indexing,
      identity-filtered search and ingestion orchestration
    - api: FastAPI REST endpoints
    - cli: Typer command-line interface

Example:
    >>> from mailrag.retrieval import DocumentStore, IngestionOrchestrator, RetrievalEngine
    >>> from mailrag.retrieval import create_embedder
    >>> store, embedder = DocumentStore(), create_embedder()
    >>> IngestionOrchestrator(store, embedder).ingest(email)
    >>> RetrievalEngine(store, embedder).search_text(
    ...     "budget review", threshold=0.3, limit=5, identity="bob@example.com"
    ... )
"""

__version__ = "0.1.0"

from mailrag.config import settings

__all__ = [
    "__version__",
    "settings",
]
