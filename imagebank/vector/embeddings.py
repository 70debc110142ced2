"""
Embedding providers for caption and query text.
The bank consumes an async EmbedFn; as_embed_fn adapts the sync providers.
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Sequence

import numpy as np

EmbedFn = Callable[[str], Awaitable[Sequence[float]]]


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    The text hash seeds a Gaussian generator, so identical text always maps
    to the identical unit vector while distinct texts are close to orthogonal
    in high dimensions.
    """

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using hash function."""
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        seed = int.from_bytes(digest[:8], "big")

        vector = np.random.default_rng(seed).standard_normal(self.dimension)
        vector /= np.linalg.norm(vector)
        return vector.astype(np.float32).tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Local sentence-transformers model for captions, queries and expansion terms.

    Vectors come back unit-length float32, so a short query and a long caption
    score on the same scale in the inner-product index. The model loads on
    first use unless one is injected.
    """

    def __init__(self, model_name: str = "all-mpnet-base-v2", model=None):
        self.model_name = model_name
        self._model = model

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        # Captions arrive with model line breaks; collapse them like queries
        text = " ".join(text.split())
        if not text:
            raise ValueError("Cannot embed empty text")
        embedding = self.model.encode(text, normalize_embeddings=True, show_progress_bar=False)
        return np.asarray(embedding, dtype=np.float32).tolist()

    def get_dimension(self) -> int:
        dimension = self.model.get_sentence_embedding_dimension()
        if not dimension:
            raise ValueError(f"Model {self.model_name} does not report an embedding dimension")
        return dimension


class OllamaEmbedding(IEmbeddingProvider):
    """Embedding provider backed by a local Ollama embedding model."""

    def __init__(self, model_name: str = "nomic-embed-text", host: str = None, dimension: int = None):
        import ollama
        self.model_name = model_name
        self.client = ollama.Client(host=host) if host else ollama.Client()
        self._dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        response = self.client.embed(model=self.model_name, input=text)
        embedding = list(response["embeddings"][0])
        if self._dimension is None:
            self._dimension = len(embedding)
        return embedding

    def get_dimension(self) -> int:
        if self._dimension is None:
            self.embed_text("dimension")
        return self._dimension


def as_embed_fn(provider: IEmbeddingProvider) -> EmbedFn:
    """Wrap a blocking provider as an async embed function."""

    async def embed(text: str) -> Sequence[float]:
        return await asyncio.to_thread(provider.embed_text, text)

    return embed
