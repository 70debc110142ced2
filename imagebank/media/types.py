"""
Media search value types shared by providers, the bank and the media client.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..bank.types import Attribution

ORIENTATIONS = ("horizontal", "vertical", "square")
PLAN_ORIENTATIONS = ORIENTATIONS + ("mixed",)
IMAGE_CATEGORIES = ("ambient", "subject", "people")


def orientation_of(width: int, height: int) -> str:
    """Classify an image by aspect ratio (10% tolerance for square)."""
    if not width or not height:
        return "square"
    ratio = width / height
    if ratio > 1.1:
        return "horizontal"
    if ratio < 0.9:
        return "vertical"
    return "square"


@dataclass
class ImageSearchResult:
    """A provider search hit normalized to the common shape."""

    id: str
    title: str
    preview_url: str
    display_url: str
    width: int
    height: int
    provider: str
    description: Optional[str] = None
    attribution: Optional[Attribution] = None

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "previewUrl": self.preview_url,
            "displayUrl": self.display_url,
            "width": self.width,
            "height": self.height,
            "provider": self.provider,
            "attribution": self.attribution.to_dict() if self.attribution else None,
        }


@dataclass
class ImageSearchOptions:
    query: str
    provider: str
    orientation: Optional[str] = None
    count: int = 5


@dataclass
class ImagePlan:
    """One image slot to fill, typically one per page section."""

    block_id: str
    search_query: str
    provider: str = "unsplash"
    placement: str = "content"
    orientation: str = "horizontal"  # horizontal, vertical, square, mixed
    count: int = 1
    category: str = "subject"


@dataclass
class ImageSource:
    url: str
    alt: str
    provider: str
    provider_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "alt": self.alt, "provider": self.provider, "providerId": self.provider_id}


@dataclass
class ImageSelection:
    block_id: str
    category: str
    placement: str
    image: ImageSource

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blockId": self.block_id,
            "category": self.category,
            "placement": self.placement,
            "image": self.image.to_dict(),
        }


@dataclass
class MediaQueryIntent:
    phrases: List[str] = field(default_factory=list)  # multi-word concepts, sorted
    terms: List[str] = field(default_factory=list)  # single tokens, sorted


@dataclass
class NormalizeResult:
    intent: MediaQueryIntent
    query_string: str


def parse_image_plan(raw: str) -> List[ImagePlan]:
    """Parse an LLM-produced JSON plan, dropping malformed items.

    Accepts an optional ```json fence around the array. Anything that is not a
    JSON array yields an empty plan.
    """
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []

    plan = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        required = ("blockId", "placement", "provider", "searchQuery", "orientation")
        if not all(isinstance(item.get(k), str) for k in required):
            continue
        if item["orientation"] not in PLAN_ORIENTATIONS:
            continue

        count = item.get("count", 1)
        plan.append(ImagePlan(
            block_id=item["blockId"],
            placement=item["placement"],
            provider=item["provider"],
            search_query=item["searchQuery"],
            orientation=item["orientation"],
            count=count if isinstance(count, int) and count > 0 else 1,
            category=item.get("category") if item.get("category") in IMAGE_CATEGORIES else "subject",
        ))
    return plan
