"""
Shared fixtures: in-memory storage, deterministic embeddings and fake
providers/analyzers so no test touches the network or a model server.
"""

import asyncio
from typing import Dict, List, Optional

import pytest

from imagebank.bank.store import ImageBankStore
from imagebank.bank.types import Attribution, ImageMetadata
from imagebank.core.storage import InMemoryObjectStorage
from imagebank.media.providers import MediaProvider, ProviderError
from imagebank.media.types import ImageSearchResult, orientation_of
from imagebank.vector.embeddings import DeterministicHashEmbedding
from imagebank.vector.index import NumpyFlatIndex

TEST_DIM = 32

_embedder = DeterministicHashEmbedding(TEST_DIM)


async def hash_embed(text: str):
    return _embedder.embed_text(text)


def run(coro):
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run(coro)


def make_image(
    image_id: str,
    provider: str = "unsplash",
    width: int = 1600,
    height: int = 900,
    title: Optional[str] = None,
) -> ImageSearchResult:
    return ImageSearchResult(
        id=image_id,
        title=title or f"Image {image_id}",
        preview_url=f"https://img.example/{provider}/{image_id}/small.jpg",
        display_url=f"https://img.example/{provider}/{image_id}/large.jpg",
        width=width,
        height=height,
        provider=provider,
        attribution=Attribution(name="Photographer", source_url=f"https://img.example/{provider}/{image_id}"),
    )


class FakeAnalyzer:
    """Captions an image from a url -> caption table (default: its url)."""

    def __init__(self, captions: Optional[Dict[str, str]] = None, fail_for: Optional[set] = None):
        self.captions = captions or {}
        self.fail_for = fail_for or set()
        self.calls: List[str] = []

    async def __call__(self, image_url: str) -> ImageMetadata:
        self.calls.append(image_url)
        if image_url in self.fail_for:
            raise RuntimeError("vision model unavailable")
        return ImageMetadata(caption=self.captions.get(image_url, image_url), subjects=["test"])


class FakeProvider(MediaProvider):
    """Serves a fixed catalog, filtered by orientation, in catalog order."""

    def __init__(self, name: str, catalog: List[ImageSearchResult], fail: bool = False):
        super().__init__()
        self.name = name
        self.catalog = catalog
        self.fail = fail
        self.calls: List[tuple] = []

    async def search(self, query, orientation=None, count=None):
        self.calls.append((query, orientation, count))
        if self.fail:
            raise ProviderError(self.name, "HTTP 500", 500)
        results = [r for r in self.catalog if orientation is None or orientation_of(r.width, r.height) == orientation]
        return results[:count] if count else results


def build_store(storage=None, analyze=None, embed=None, **kwargs) -> ImageBankStore:
    return ImageBankStore(
        storage=storage if storage is not None else InMemoryObjectStorage(prefix="bank/"),
        embed=embed or hash_embed,
        analyze=analyze or FakeAnalyzer(),
        index=kwargs.pop("index", None) or NumpyFlatIndex(TEST_DIM),
        dimension=TEST_DIM,
        **kwargs,
    )


@pytest.fixture
def storage():
    return InMemoryObjectStorage(prefix="bank/")


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def bank(storage, analyzer):
    """A loaded, empty bank over in-memory storage."""
    store = build_store(storage=storage, analyze=analyzer)
    run(store.load())
    return store
