"""
Image bank records.
Entries persist as camelCase JSON in bank.json; attributes are snake_case.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

ACCURACY_RATINGS = ("accurate", "partial", "wrong")
REVIEW_STATUSES = ("pending", "approved", "flagged")

# Score multiplier per indexed vector kind
VECTOR_WEIGHTS = {
    "caption": 1.0,  # what the vision model saw
    "query": 1.0,  # search that originally surfaced the image
    "expansion": 0.7,  # model-suggested related terms
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Attribution:
    name: str
    source_url: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "sourceUrl": self.source_url}
        if self.url is not None:
            data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attribution':
        return cls(name=data.get("name", "Unknown"), source_url=data.get("sourceUrl", ""), url=data.get("url"))


@dataclass
class ColorProfile:
    dominant: List[str] = field(default_factory=list)
    mood: str = "neutral"  # warm, cool, neutral


@dataclass
class ImageMetadata:
    """Vision-model analysis of a stored image."""

    caption: str
    subjects: List[str] = field(default_factory=list)
    colors: ColorProfile = field(default_factory=ColorProfile)
    style: List[str] = field(default_factory=list)
    composition: str = "other"
    lighting: str = "natural"
    mood: List[str] = field(default_factory=list)
    context: List[str] = field(default_factory=list)
    expansions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caption": self.caption,
            "subjects": list(self.subjects),
            "colors": {"dominant": list(self.colors.dominant), "mood": self.colors.mood},
            "style": list(self.style),
            "composition": self.composition,
            "lighting": self.lighting,
            "mood": list(self.mood),
            "context": list(self.context),
            "expansions": list(self.expansions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImageMetadata':
        colors = data.get("colors") or {}
        return cls(
            caption=data["caption"],
            subjects=list(data.get("subjects", [])),
            colors=ColorProfile(dominant=list(colors.get("dominant", [])), mood=colors.get("mood", "neutral")),
            style=list(data.get("style", [])),
            composition=data.get("composition", "other"),
            lighting=data.get("lighting", "natural"),
            mood=list(data.get("mood", [])),
            context=list(data.get("context", [])),
            expansions=list(data.get("expansions", [])),
        )


@dataclass
class VectorSlots:
    """Index slots owned by an entry, persisted as the link from bank.json to bank.index."""

    caption: int
    queries: List[int] = field(default_factory=list)
    expansions: List[int] = field(default_factory=list)

    def all_slots(self) -> List[int]:
        return [slot for slot, _ in self.labeled()]

    def labeled(self) -> List[Tuple[int, str]]:
        """(slot, vector kind) pairs, caption first."""
        return (
            [(self.caption, "caption")]
            + [(slot, "query") for slot in self.queries]
            + [(slot, "expansion") for slot in self.expansions]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"caption": self.caption, "queries": list(self.queries), "expansions": list(self.expansions)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VectorSlots':
        return cls(
            caption=int(data["caption"]),
            queries=[int(i) for i in data.get("queries", [])],
            expansions=[int(i) for i in data.get("expansions", [])],
        )


@dataclass
class SearchTest:
    query: str
    found: bool
    rank: Optional[int]  # 1-indexed when found
    tested_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "found": self.found, "rank": self.rank, "testedAt": self.tested_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchTest':
        return cls(query=data["query"], found=bool(data["found"]), rank=data.get("rank"), tested_at=data["testedAt"])


@dataclass
class Review:
    """Human review of a bank entry."""

    accuracy: Optional[str] = None  # accurate, partial, wrong
    accuracy_at: Optional[str] = None
    search_tests: List[SearchTest] = field(default_factory=list)
    status: str = "pending"  # pending, approved, flagged
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "accuracyAt": self.accuracy_at,
            "searchTests": [t.to_dict() for t in self.search_tests],
            "status": self.status,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Review':
        return cls(
            accuracy=data.get("accuracy"),
            accuracy_at=data.get("accuracyAt"),
            search_tests=[SearchTest.from_dict(t) for t in data.get("searchTests", [])],
            status=data.get("status", "pending"),
            notes=data.get("notes"),
        )


@dataclass
class BankEntry:
    """A cached provider image with its analysis and index slots."""

    id: str  # "{provider}:{provider_id}"
    provider: str
    provider_id: str
    title: str
    width: int
    height: int
    metadata: ImageMetadata
    vectors: Optional[VectorSlots]
    created_at: str
    description: Optional[str] = None
    preview_url: Optional[str] = None
    display_url: Optional[str] = None
    preview_key: Optional[str] = None
    display_key: Optional[str] = None
    attribution: Optional[Attribution] = None
    queries: List[str] = field(default_factory=list)
    review: Optional[Review] = None
    blacklisted: bool = False

    @staticmethod
    def make_id(provider: str, provider_id: str) -> str:
        return f"{provider}:{provider_id}"

    @property
    def aspect_ratio(self) -> float:
        if not self.width or not self.height:
            return 1.0
        return self.width / self.height

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for bank.json."""
        data = {
            "id": self.id,
            "provider": self.provider,
            "providerId": self.provider_id,
            "title": self.title,
            "description": self.description,
            "width": self.width,
            "height": self.height,
            "previewUrl": self.preview_url,
            "displayUrl": self.display_url,
            "previewKey": self.preview_key,
            "displayKey": self.display_key,
            "attribution": self.attribution.to_dict() if self.attribution else None,
            "metadata": self.metadata.to_dict(),
            "vectors": self.vectors.to_dict() if self.vectors else None,
            "queries": list(self.queries),
            "createdAt": self.created_at,
            "blacklisted": self.blacklisted,
        }
        if self.review is not None:
            data["review"] = self.review.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BankEntry':
        """Create from a bank.json record."""
        vectors = data.get("vectors")
        attribution = data.get("attribution")
        review = data.get("review")
        return cls(
            id=data["id"],
            provider=data["provider"],
            provider_id=str(data["providerId"]),
            title=data.get("title", "Untitled"),
            description=data.get("description"),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            preview_url=data.get("previewUrl"),
            display_url=data.get("displayUrl"),
            preview_key=data.get("previewKey"),
            display_key=data.get("displayKey"),
            attribution=Attribution.from_dict(attribution) if attribution else None,
            metadata=ImageMetadata.from_dict(data["metadata"]),
            vectors=VectorSlots.from_dict(vectors) if vectors else None,
            queries=list(data.get("queries", [])),
            created_at=data["createdAt"],
            review=Review.from_dict(review) if review else None,
            blacklisted=bool(data.get("blacklisted", False)),
        )


@dataclass
class BankHit:
    entry: BankEntry
    score: float
    match_type: str = "caption"


@dataclass
class BankSearchResult:
    results: List[BankHit]
    top_score: float


@dataclass
class BankListResult:
    entries: List[BankEntry]
    total: int


def compute_searchability(tests: List[SearchTest]) -> Optional[float]:
    """Mean reciprocal rank over search tests; misses count as 0."""
    if not tests:
        return None
    scores = [1.0 / t.rank if t.found and t.rank else 0.0 for t in tests]
    return sum(scores) / len(scores)
