"""
Email chunk retrieval pipeline.

Components:
    - chunker: Split email bodies into word-aligned, size-bounded chunks
    - embeddings: Generate vector embeddings via hosted APIs
    - indexer: FAISS index for cosine similarity search
    - store: SQLite persistence for emails and embedded chunks
    - search: Identity-filtered similarity search
    - ingestion: Chunk -> embed -> store orchestration
"""

from mailrag.retrieval.chunker import chunk_text
from mailrag.retrieval.embeddings import Embedder, HuggingFaceEmbedder, OpenAIEmbedder, create_embedder
from mailrag.retrieval.indexer import SimilarityIndex
from mailrag.retrieval.ingestion import IngestionOrchestrator, IngestionResult, IngestionStage
from mailrag.retrieval.search import MAX_MATCH_COUNT, RetrievalEngine
from mailrag.retrieval.store import DocumentStore

__all__ = [
    "chunk_text",
    "Embedder",
    "HuggingFaceEmbedder",
    "OpenAIEmbedder",
    "create_embedder",
    "SimilarityIndex",
    "DocumentStore",
    "RetrievalEngine",
    "MAX_MATCH_COUNT",
    "IngestionOrchestrator",
    "IngestionResult",
    "IngestionStage",
]
