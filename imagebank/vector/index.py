"""
Vector index interface and a numpy brute-force implementation.
Slots are assigned in insertion order starting at 0 and are never reused.
"""

import io
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Union

import numpy as np

from .types import DimensionMismatch, IndexCorruptedError, SearchHit

VectorLike = Union[Sequence[float], np.ndarray]


def normalize_vector(vector: VectorLike, dimension: int) -> np.ndarray:
    """Check dimension and L2-normalize a vector into a float32 row."""
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    if array.shape[0] != dimension:
        raise DimensionMismatch(dimension, array.shape[0])

    norm = np.linalg.norm(array)
    if norm == 0:  # Zero vectors have no direction to compare
        raise ValueError("Cannot index a zero vector")

    return (array / norm).astype(np.float32)


class IVectorIndex(ABC):
    """Abstract interface for flat inner-product vector indexes."""

    dimension: int

    @abstractmethod
    def add(self, vector: VectorLike) -> None:
        """Append a single vector; its slot is the previous size()."""
        pass

    @abstractmethod
    def search(self, query_vector: VectorLike, k: int) -> List[SearchHit]:
        """Return the top-k slots by descending score."""
        pass

    @abstractmethod
    def serialize(self) -> bytes:
        """Produce an opaque binary blob of the index state."""
        pass

    @abstractmethod
    def deserialize(self, data: bytes) -> None:
        """Replace index state from a blob produced by serialize()."""
        pass

    @abstractmethod
    def size(self) -> int:
        """Return the number of stored vectors."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Remove all vectors."""
        pass


class NumpyFlatIndex(IVectorIndex):
    """Exhaustive inner-product index over an in-memory numpy matrix."""

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension
        self._vectors: Optional[np.ndarray] = None

    def add(self, vector: VectorLike) -> None:
        """Normalize and append a vector to the matrix."""
        row = normalize_vector(vector, self.dimension).reshape(1, -1)
        if self._vectors is None:
            self._vectors = row
        else:
            self._vectors = np.vstack([self._vectors, row])

    def search(self, query_vector: VectorLike, k: int) -> List[SearchHit]:
        """Score every stored vector against the query."""
        total = self.size()
        if total == 0 or k <= 0:
            return []

        query = normalize_vector(query_vector, self.dimension)
        scores = self._vectors @ query
        k = min(k, total)

        # Stable sort keeps the lower slot first on ties, like faiss
        ranked = np.argsort(-scores, kind="stable")[:k]
        return [SearchHit(slot=int(i), score=float(scores[i])) for i in ranked]

    def serialize(self) -> bytes:
        """Write the matrix with np.save into a byte buffer."""
        buffer = io.BytesIO()
        matrix = self._vectors if self._vectors is not None else np.empty((0, self.dimension), dtype=np.float32)
        np.save(buffer, matrix, allow_pickle=False)
        return buffer.getvalue()

    def deserialize(self, data: bytes) -> None:
        """Restore the matrix from np.save output."""
        try:
            matrix = np.load(io.BytesIO(data), allow_pickle=False)
        except (ValueError, OSError, EOFError) as e:
            raise IndexCorruptedError(f"Unreadable index blob: {e}") from e

        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise IndexCorruptedError(
                f"Index blob has shape {matrix.shape}, expected (n, {self.dimension})"
            )

        self._vectors = matrix.astype(np.float32) if matrix.shape[0] else None

    def size(self) -> int:
        return 0 if self._vectors is None else int(self._vectors.shape[0])

    def reset(self) -> None:
        self._vectors = None
