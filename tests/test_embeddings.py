"""
Tests for embedding providers.
"""

import asyncio
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from imagebank.vector.embeddings import (
    DeterministicHashEmbedding,
    OllamaEmbedding,
    SentenceTransformerEmbedding,
    as_embed_fn,
)


def test_hash_embedding_is_deterministic():
    provider = DeterministicHashEmbedding(dimension=64)

    assert provider.embed_text("sushi restaurant") == provider.embed_text("sushi restaurant")
    assert provider.get_dimension() == 64


def test_hash_embedding_is_unit_length():
    vector = np.array(DeterministicHashEmbedding(dimension=64).embed_text("coffee shop"))

    assert vector.shape == (64,)
    assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)


def test_distinct_texts_are_not_similar():
    provider = DeterministicHashEmbedding(dimension=256)
    a = np.array(provider.embed_text("mountain lake at dawn"))
    b = np.array(provider.embed_text("plate of pasta"))

    assert float(a @ b) < 0.5


def test_as_embed_fn_wraps_sync_provider():
    provider = DeterministicHashEmbedding(dimension=16)
    embed = as_embed_fn(provider)

    vector = asyncio.run(embed("city skyline"))

    assert list(vector) == provider.embed_text("city skyline")


def fake_sentence_model(dimension=8):
    model = MagicMock()
    model.encode.return_value = np.ones(dimension, dtype=np.float64) / np.sqrt(dimension)
    model.get_sentence_embedding_dimension.return_value = dimension
    return model


def test_sentence_transformer_collapses_whitespace():
    model = fake_sentence_model()
    provider = SentenceTransformerEmbedding(model=model)

    vector = provider.embed_text("  a bowl of ramen\non a wooden table ")

    assert len(vector) == 8
    assert model.encode.call_args.args[0] == "a bowl of ramen on a wooden table"
    assert model.encode.call_args.kwargs["normalize_embeddings"] is True
    assert provider.get_dimension() == 8


def test_sentence_transformer_rejects_blank_text():
    provider = SentenceTransformerEmbedding(model=fake_sentence_model())

    with pytest.raises(ValueError):
        provider.embed_text(" \n ")


def test_ollama_dimension_comes_from_model():
    client = MagicMock()
    client.embed.return_value = {"embeddings": [[0.1] * 768]}

    with patch("ollama.Client", return_value=client):
        provider = OllamaEmbedding("nomic-embed-text")

    assert provider.get_dimension() == 768
    client.embed.assert_called_once()
