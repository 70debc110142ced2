"""
Vector layer: flat inner-product indexes over caption embeddings.
"""

# Package initialization for vector module
from .index import IVectorIndex, NumpyFlatIndex, normalize_vector
from .faiss_store import FaissVectorIndex
from .types import SearchHit, DimensionMismatch, IndexCorruptedError
from .embeddings import (
    EmbedFn,
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    OllamaEmbedding,
    as_embed_fn,
)

__all__ = [
    'IVectorIndex',
    'NumpyFlatIndex',
    'FaissVectorIndex',
    'normalize_vector',
    'SearchHit',
    'DimensionMismatch',
    'IndexCorruptedError',
    'EmbedFn',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'OllamaEmbedding',
    'as_embed_fn',
]
