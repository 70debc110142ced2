"""
Vector index value types and errors.
"""

from dataclasses import dataclass


@dataclass
class SearchHit:
    """Represents a nearest-neighbor match from a vector index."""

    slot: int
    """Position of the matched vector in the index (0-based, insertion order)"""

    score: float
    """Inner-product similarity of the match (cosine for normalized vectors)"""


class DimensionMismatch(ValueError):
    """Raised when a vector does not match the index dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")
        self.expected = expected
        self.actual = actual


class IndexCorruptedError(Exception):
    """Raised when a serialized index blob cannot be restored."""
    pass
