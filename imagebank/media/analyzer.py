"""
Vision analysis of bank candidates using an Ollama multimodal model.
"""

import json
from typing import Awaitable, Callable, Optional

from ..bank.types import ImageMetadata
from .providers import download_image

ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "caption": {"type": "string"},
        "subjects": {"type": "array", "items": {"type": "string"}},
        "colors": {
            "type": "object",
            "properties": {
                "dominant": {"type": "array", "items": {"type": "string"}},
                "mood": {"type": "string", "enum": ["warm", "cool", "neutral"]},
            },
            "required": ["dominant", "mood"],
        },
        "style": {"type": "array", "items": {"type": "string"}},
        "composition": {
            "type": "string",
            "enum": ["centered", "rule-of-thirds", "symmetrical", "asymmetrical", "other"],
        },
        "lighting": {"type": "string", "enum": ["natural", "studio", "dramatic", "soft", "mixed"]},
        "mood": {"type": "array", "items": {"type": "string"}},
        "context": {"type": "array", "items": {"type": "string"}},
        "expansions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["caption", "subjects", "colors", "style", "composition", "lighting", "mood", "context", "expansions"],
}

SYSTEM_PROMPT = """You are an image analyst for a stock photo search system. Analyze images to extract rich metadata that will help match future search queries.

Be specific and descriptive. The caption should be 2-3 sentences. Think about what search terms someone might use to find this image.

For expansions, generate 5-10 diverse related search terms - synonyms, broader categories, specific details, and related concepts."""


class AnalysisError(Exception):
    """Raised when the vision model returns no usable analysis."""
    pass


class OllamaImageAnalyzer:
    """Callable analyzer: await analyzer(image_url) -> ImageMetadata."""

    def __init__(
        self,
        model: str = "llava:latest",
        host: str = None,
        client=None,
        fetch: Optional[Callable[[str], Awaitable[bytes]]] = None,
    ):
        if client is None:
            import ollama
            client = ollama.AsyncClient(host=host) if host else ollama.AsyncClient()
        self.client = client
        self.model = model
        self.fetch = fetch or download_image

    async def __call__(self, image_url: str) -> ImageMetadata:
        image_bytes = await self.fetch(image_url)

        response = await self.client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": "Analyze this image:", "images": [image_bytes]},
            ],
            format=ANALYSIS_SCHEMA,
            options={"temperature": 0.2},
        )

        content = response.message.content if response and response.message else None
        if not content:
            raise AnalysisError(f"No response from vision model for {image_url}")

        try:
            data = json.loads(content)
            metadata = ImageMetadata.from_dict(data)
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError) as e:
            raise AnalysisError(f"Malformed analysis for {image_url}: {e}") from e

        if not metadata.caption.strip():
            raise AnalysisError(f"Empty caption for {image_url}")
        return metadata
