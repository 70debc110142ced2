"""
Vision analyzer tests with a mocked Ollama client.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from imagebank.media.analyzer import ANALYSIS_SCHEMA, AnalysisError, OllamaImageAnalyzer

from conftest import run


def analyzer_with(content):
    client = MagicMock()
    client.chat = AsyncMock(return_value=SimpleNamespace(message=SimpleNamespace(content=content)))
    fetch = AsyncMock(return_value=b"jpeg")
    return OllamaImageAnalyzer(model="vision-test", client=client, fetch=fetch), client, fetch


def test_analysis_parsed_into_metadata():
    payload = {
        "caption": "A bowl of ramen on a wooden table.",
        "subjects": ["ramen", "bowl"],
        "colors": {"dominant": ["brown", "orange"], "mood": "warm"},
        "style": ["food photography"],
        "composition": "centered",
        "lighting": "soft",
        "mood": ["cozy"],
        "context": ["restaurant"],
        "expansions": ["noodles", "japanese food"],
    }
    analyzer, client, fetch = analyzer_with(json.dumps(payload))

    metadata = run(analyzer("https://img.example/ramen.jpg"))

    assert metadata.caption == payload["caption"]
    assert metadata.colors.mood == "warm"
    assert metadata.expansions == ["noodles", "japanese food"]
    fetch.assert_awaited_once_with("https://img.example/ramen.jpg")
    kwargs = client.chat.call_args.kwargs
    assert kwargs["format"] is ANALYSIS_SCHEMA
    assert kwargs["messages"][-1]["images"] == [b"jpeg"]


@pytest.mark.parametrize("content", ["", "not json", json.dumps({"subjects": []}), json.dumps({"caption": "  "})])
def test_unusable_analysis_raises(content):
    analyzer, _, _ = analyzer_with(content)

    with pytest.raises(AnalysisError):
        run(analyzer("https://img.example/x.jpg"))
