"""
FAISS index management for chunk similarity search.

Vectors are keyed by chunk id so they can be inserted one at a time as
chunks are stored and removed again when their email is deleted.
"""

from collections.abc import Iterable
from typing import Optional

import faiss
import numpy as np
from numpy.typing import NDArray

from mailrag.config import settings


class SimilarityIndex:
    """
    FAISS-based cosine similarity index over chunk vectors.

    Uses IndexFlatIP (inner product) on L2-normalised vectors, wrapped in
    IndexIDMap2 so entries are addressed by chunk id. Search is exact.

    Example:
        >>> index = SimilarityIndex(dimension=1536)
        >>> index.add(1, embedding)
        >>> index.query(query_embedding, k=5)
        [(1, 0.87)]
    """

    def __init__(self, dimension: Optional[int] = None) -> None:
        """
        Initialize an empty index.

        Args:
            dimension: Vector dimension (default from settings)
        """
        self.dimension = dimension or settings.embedding_dimension
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))
        self._ids: set[int] = set()

    @property
    def size(self) -> int:
        """Number of vectors in the index."""
        return int(self._index.ntotal)

    def contains(self, chunk_id: int) -> bool:
        """Check whether a chunk id has a vector in the index."""
        return chunk_id in self._ids

    def add(self, chunk_id: int, vector: NDArray[np.float32]) -> None:
        """
        Insert one chunk vector.

        Args:
            chunk_id: Store-assigned chunk id
            vector: Embedding of shape (dimension,)

        Raises:
            ValueError: If the id is already indexed or the vector has the wrong shape
        """
        if chunk_id in self._ids:
            raise ValueError(f"Chunk {chunk_id} is already indexed")

        normalized = self._normalize(self._as_matrix(vector))
        self._index.add_with_ids(normalized, np.array([chunk_id], dtype=np.int64))
        self._ids.add(chunk_id)

    def remove(self, chunk_ids: Iterable[int]) -> int:
        """
        Remove chunk vectors. Unknown ids are ignored.

        Returns:
            Number of vectors removed
        """
        present = [chunk_id for chunk_id in chunk_ids if chunk_id in self._ids]
        if not present:
            return 0

        removed = int(self._index.remove_ids(np.array(present, dtype=np.int64)))
        self._ids.difference_update(present)
        return removed

    def clear(self) -> None:
        """Drop every vector."""
        self._index.reset()
        self._ids.clear()

    def rebuild(self, items: Iterable[tuple[int, NDArray[np.float32]]]) -> None:
        """
        Replace the index contents with the given (chunk_id, vector) pairs.

        Raises:
            ValueError: If ids repeat or any vector has the wrong shape
        """
        self.clear()
        items = list(items)
        if not items:
            return

        ids = np.array([chunk_id for chunk_id, _ in items], dtype=np.int64)
        if len(set(ids.tolist())) != len(ids):
            raise ValueError("Duplicate chunk ids in rebuild input")

        matrix = np.vstack([self._as_matrix(vector) for _, vector in items])
        self._index.add_with_ids(self._normalize(matrix), ids)
        self._ids.update(ids.tolist())

    def query(
        self,
        vector: NDArray[np.float32],
        k: int,
        ids: Optional[Iterable[int]] = None,
    ) -> list[tuple[int, float]]:
        """
        Find the chunks most similar to a vector.

        Args:
            vector: Query vector of shape (dimension,)
            k: Maximum number of results
            ids: Restrict results to these chunk ids (optional)

        Returns:
            List of (chunk_id, similarity) tuples sorted by similarity
            descending, ties broken by chunk id ascending

        Raises:
            ValueError: If the vector has the wrong shape
        """
        query = self._normalize(self._as_matrix(vector))

        if k <= 0 or self.size == 0:
            return []

        allowed = None if ids is None else set(ids)
        if allowed is not None and not allowed:
            return []

        # Exhaustive search so filtering and tie-breaking see every candidate
        scores, labels = self._index.search(query, self.size)

        results: list[tuple[int, float]] = []
        for label, score in zip(labels[0], scores[0]):
            chunk_id = int(label)
            if chunk_id < 0:
                continue
            if allowed is not None and chunk_id not in allowed:
                continue
            results.append((chunk_id, float(np.clip(score, -1.0, 1.0))))

        results.sort(key=lambda item: (-item[1], item[0]))
        return results[:k]

    def _as_matrix(self, vector: NDArray[np.float32]) -> NDArray[np.float32]:
        matrix = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if matrix.shape[1] != self.dimension:
            raise ValueError(
                f"Vectors must have dimension {self.dimension}, got {matrix.shape[1]}"
            )
        return matrix

    def _normalize(self, embeddings: NDArray[np.float32]) -> NDArray[np.float32]:
        """
        Normalize embeddings to unit length for cosine similarity.

        Args:
            embeddings: Array of shape (n, dimension)

        Returns:
            Normalized, C-contiguous embeddings of same shape
        """
        # float32 squares underflow or overflow at extreme magnitudes
        wide = embeddings.astype(np.float64)
        norms = np.linalg.norm(wide, axis=1, keepdims=True)
        # Avoid division by zero
        norms = np.where(norms == 0, 1, norms)
        return np.ascontiguousarray(wide / norms, dtype=np.float32)
