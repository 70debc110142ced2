"""
Test cases for the flat inner-product vector indexes.
"""

import numpy as np
import pytest

from imagebank.vector import DimensionMismatch, IndexCorruptedError, NumpyFlatIndex

DIM = 8


def _faiss_index(dimension):
    pytest.importorskip("faiss")
    from imagebank.vector.faiss_store import FaissVectorIndex
    return FaissVectorIndex(dimension)


@pytest.fixture(params=["numpy", "faiss"])
def make_index(request):
    """Factory for each index implementation."""
    if request.param == "faiss":
        return _faiss_index
    return NumpyFlatIndex


def unit(i, dimension=DIM):
    vector = np.zeros(dimension, dtype=np.float32)
    vector[i] = 1.0
    return vector


def test_empty_index_search_returns_nothing(make_index):
    index = make_index(DIM)

    assert index.size() == 0
    assert index.search(unit(0), 5) == []


def test_slots_follow_insertion_order(make_index):
    index = make_index(DIM)
    for i in range(3):
        index.add(unit(i))

    assert index.size() == 3
    hits = index.search(unit(1), 1)
    assert hits[0].slot == 1
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)


def test_search_ranks_by_descending_score(make_index):
    index = make_index(DIM)
    index.add(unit(0))
    index.add(unit(0) + unit(1))  # cos 0.707 against unit(0)
    index.add(unit(2))

    hits = index.search(unit(0), 3)

    assert [h.slot for h in hits] == [0, 1, 2]
    assert hits[0].score > hits[1].score > hits[2].score
    assert hits[1].score == pytest.approx(0.7071, abs=1e-3)


def test_k_larger_than_size_is_clamped(make_index):
    index = make_index(DIM)
    index.add(unit(0))
    index.add(unit(1))

    assert len(index.search(unit(0), 10)) == 2
    assert index.search(unit(0), 0) == []


def test_vectors_are_normalized_on_add(make_index):
    index = make_index(DIM)
    index.add(unit(3) * 42.0)

    hits = index.search(unit(3) * 0.5, 1)
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)


def test_dimension_mismatch_rejected(make_index):
    index = make_index(DIM)

    with pytest.raises(DimensionMismatch) as exc_info:
        index.add(np.ones(DIM + 1, dtype=np.float32))
    assert exc_info.value.expected == DIM
    assert exc_info.value.actual == DIM + 1
    assert index.size() == 0

    index.add(unit(0))
    with pytest.raises(DimensionMismatch):
        index.search(np.ones(3, dtype=np.float32), 1)


def test_zero_vector_rejected(make_index):
    index = make_index(DIM)

    with pytest.raises(ValueError):
        index.add(np.zeros(DIM, dtype=np.float32))


def test_serialize_restores_same_results(make_index):
    index = make_index(DIM)
    rng = np.random.default_rng(7)
    for _ in range(5):
        index.add(rng.standard_normal(DIM))
    query = rng.standard_normal(DIM)
    before = index.search(query, 5)

    restored = make_index(DIM)
    restored.deserialize(index.serialize())

    assert restored.size() == 5
    after = restored.search(query, 5)
    assert [h.slot for h in after] == [h.slot for h in before]
    assert [h.score for h in after] == pytest.approx([h.score for h in before], abs=1e-6)


def test_serialize_empty_index(make_index):
    restored = make_index(DIM)
    restored.deserialize(make_index(DIM).serialize())

    assert restored.size() == 0


def test_deserialize_wrong_dimension_is_corruption(make_index):
    index = make_index(DIM)
    index.add(unit(0))

    other = make_index(DIM * 2)
    with pytest.raises(IndexCorruptedError):
        other.deserialize(index.serialize())


def test_numpy_index_rejects_garbage_blob():
    index = NumpyFlatIndex(DIM)

    with pytest.raises(IndexCorruptedError):
        index.deserialize(b"definitely not an index")


def test_reset_clears_vectors(make_index):
    index = make_index(DIM)
    index.add(unit(0))
    index.reset()

    assert index.size() == 0
    assert index.search(unit(0), 1) == []
