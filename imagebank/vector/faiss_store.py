"""
FAISS-backed vector index.
Flat inner-product index over L2-normalized vectors (cosine similarity).
"""

from typing import List

import numpy as np

from .index import IVectorIndex, VectorLike, normalize_vector
from .types import IndexCorruptedError, SearchHit


class FaissVectorIndex(IVectorIndex):
    """FAISS-backed implementation of IVectorIndex."""

    def __init__(self, dimension: int = 1536):
        """
        Initialize FAISS vector index.

        Args:
            dimension: Dimension of the vectors (default: 1536 for caption embeddings)
        """
        try:
            import faiss
            self.faiss = faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.dimension = dimension

        # Create a flat index (inner product metric for cosine similarity)
        self.index = faiss.IndexFlatIP(dimension)

    def add(self, vector: VectorLike) -> None:
        """Normalize and add a single vector to the FAISS index."""
        vector_array = normalize_vector(vector, self.dimension)
        self.index.add(vector_array.reshape(1, -1))

    def search(self, query_vector: VectorLike, k: int) -> List[SearchHit]:
        """Search for similar vectors and return ranked slots."""
        if not self.index.ntotal or k <= 0:
            return []

        query_array = normalize_vector(query_vector, self.dimension).reshape(1, -1)

        # Perform search
        scores, indices = self.index.search(query_array, min(k, self.index.ntotal))

        hits = []
        for slot, score in zip(indices[0], scores[0]):
            if slot < 0:  # FAISS pads missing neighbours with -1
                continue
            hits.append(SearchHit(slot=int(slot), score=float(score)))
        return hits

    def serialize(self) -> bytes:
        """Serialize the FAISS index to bytes."""
        return self.faiss.serialize_index(self.index).tobytes()

    def deserialize(self, data: bytes) -> None:
        """Restore the FAISS index from bytes produced by serialize()."""
        try:
            restored = self.faiss.deserialize_index(np.frombuffer(data, dtype=np.uint8))
        except RuntimeError as e:
            raise IndexCorruptedError(f"Unreadable FAISS index blob: {e}") from e

        if restored.d != self.dimension:
            raise IndexCorruptedError(
                f"FAISS index dimension {restored.d} does not match expected dimension {self.dimension}"
            )
        if restored.metric_type != self.faiss.METRIC_INNER_PRODUCT:
            raise IndexCorruptedError("FAISS index does not use the inner product metric")

        self.index = restored

    def size(self) -> int:
        return int(self.index.ntotal)

    def reset(self) -> None:
        """Clear all vectors from the FAISS index."""
        # Create a new index with same parameters
        self.index = self.faiss.IndexFlatIP(self.dimension)
