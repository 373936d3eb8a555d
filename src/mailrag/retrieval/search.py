"""
Identity-filtered similarity search over stored chunks.

Given a query vector and a participant address, returns the chunks of
emails that address sent or primarily received, ranked by cosine
similarity to the query.
"""

import logging
import math
from typing import Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray
from pydantic.networks import validate_email

from mailrag.errors import QueryError
from mailrag.models import SearchResult
from mailrag.retrieval.embeddings import Embedder
from mailrag.retrieval.store import DocumentStore

logger = logging.getLogger(__name__)

MAX_MATCH_COUNT = 200
"""Hard cap on results per search, whatever limit the caller asks for."""


class RetrievalEngine:
    """
    Rank an identity's email chunks against a query.

    Example:
        >>> engine = RetrievalEngine(store, embedder)
        >>> engine.search(vector, threshold=0.3, limit=10, identity="bob@example.com")
        [SearchResult(chunk_id=4, email_id=2, content="...", similarity=0.82)]
    """

    def __init__(self, store: DocumentStore, embedder: Optional[Embedder] = None) -> None:
        self.store = store
        self.embedder = embedder

    def search(
        self,
        query_vector: Union[NDArray[np.float32], Sequence[float]],
        threshold: float,
        limit: int,
        identity: str,
    ) -> list[SearchResult]:
        """
        Find chunks similar to a query vector.

        Only chunks of emails where ``identity`` is the sender or a primary
        recipient are considered. Matches must score strictly above
        ``threshold``; at most ``min(limit, 200)`` are returned.

        Args:
            query_vector: Query embedding of the store's dimension
            threshold: Exclusive lower bound on cosine similarity
            limit: Maximum number of results (<= 0 returns nothing)
            identity: Sender or recipient address to filter by

        Returns:
            Matches sorted by similarity descending

        Raises:
            QueryError: If the vector, threshold or identity is malformed
        """
        vector = self._check_vector(query_vector)
        threshold = self._check_threshold(threshold)
        identity = self._check_identity(identity)

        if limit <= 0:
            return []
        count = min(limit, MAX_MATCH_COUNT)

        with self.store.snapshot() as store:
            candidates = store.chunk_ids_for_identity(identity)
            if not candidates:
                logger.debug(f"No chunks visible to {identity}")
                return []

            hits = [
                (chunk_id, similarity)
                for chunk_id, similarity in store.index.query(vector, k=len(candidates), ids=candidates)
                if similarity > threshold
            ][:count]
            contents = store.get_chunk_contents(chunk_id for chunk_id, _ in hits)

        results = [
            SearchResult(
                chunk_id=chunk_id,
                email_id=contents[chunk_id][0],
                content=contents[chunk_id][1],
                similarity=similarity,
            )
            for chunk_id, similarity in hits
        ]
        logger.debug(
            f"Search for {identity}: {len(candidates)} candidates, {len(results)} matches"
        )
        return results

    def search_text(
        self,
        query_text: str,
        threshold: float,
        limit: int,
        identity: str,
    ) -> list[SearchResult]:
        """
        Embed a query text, then search with its vector.

        Raises:
            RuntimeError: If the engine was built without an embedder
            EmptyInputError: If query_text is empty
            ProviderError: If the embedding call fails
            QueryError: If threshold or identity is malformed
        """
        if self.embedder is None:
            raise RuntimeError("RetrievalEngine has no embedder for text queries")

        vector = self.embedder.embed(query_text)
        return self.search(vector, threshold=threshold, limit=limit, identity=identity)

    def _check_vector(
        self, query_vector: Union[NDArray[np.float32], Sequence[float]]
    ) -> NDArray[np.float32]:
        try:
            vector = np.asarray(query_vector, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise QueryError(f"Query vector is not numeric: {e}") from e

        if vector.shape != (self.store.dimension,):
            raise QueryError(
                f"Query vector must have shape ({self.store.dimension},), got {vector.shape}"
            )
        if not np.all(np.isfinite(vector)):
            raise QueryError("Query vector contains non-finite values")
        if not np.any(vector):
            raise QueryError("Query vector must be non-zero")
        return vector

    @staticmethod
    def _check_threshold(threshold: float) -> float:
        try:
            value = float(threshold)
        except (TypeError, ValueError) as e:
            raise QueryError(f"Threshold must be a number, got {threshold!r}") from e
        if math.isnan(value):
            raise QueryError("Threshold must not be NaN")
        return value

    @staticmethod
    def _check_identity(identity: str) -> str:
        try:
            _, normalized = validate_email(identity)
        except (TypeError, ValueError) as e:
            raise QueryError(f"Identity is not a valid email address: {identity!r}") from e
        return normalized
