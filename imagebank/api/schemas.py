"""
Request/response models for the image bank API.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..bank.types import ACCURACY_RATINGS, REVIEW_STATUSES
from ..media.types import IMAGE_CATEGORIES, ORIENTATIONS, PLAN_ORIENTATIONS


class HealthResponse(BaseModel):
    status: str
    version: str
    bank_state: str
    entries: int
    vectors: int
    providers: List[str]


class AttributionModel(BaseModel):
    name: str
    source_url: str
    url: Optional[str] = None


class ImageResultModel(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    preview_url: str
    display_url: str
    width: int
    height: int
    provider: str
    attribution: Optional[AttributionModel] = None


class ImageSearchResponse(BaseModel):
    query: str
    results: List[ImageResultModel]


class PlanItemRequest(BaseModel):
    block_id: str
    search_query: str
    provider: str = "unsplash"
    placement: str = "content"
    orientation: str = "horizontal"
    count: int = Field(default=1, ge=1, le=30)
    category: str = "subject"

    @field_validator('block_id', 'search_query')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v

    @field_validator('orientation')
    @classmethod
    def orientation_must_be_valid(cls, v):
        if v not in PLAN_ORIENTATIONS:
            raise ValueError(f'orientation must be one of: {list(PLAN_ORIENTATIONS)}')
        return v

    @field_validator('category')
    @classmethod
    def category_must_be_valid(cls, v):
        if v not in IMAGE_CATEGORIES:
            raise ValueError(f'category must be one of: {list(IMAGE_CATEGORIES)}')
        return v


class ImageSourceModel(BaseModel):
    url: str
    alt: str
    provider: str
    provider_id: str


class SelectionModel(BaseModel):
    block_id: str
    category: str
    placement: str
    image: ImageSourceModel


class PlanResponse(BaseModel):
    selections: List[SelectionModel]


# Review

class SearchTestModel(BaseModel):
    query: str
    found: bool
    rank: Optional[int] = None
    tested_at: str


class ReviewModel(BaseModel):
    accuracy: Optional[str] = None
    accuracy_at: Optional[str] = None
    search_tests: List[SearchTestModel] = []
    status: str = "pending"
    notes: Optional[str] = None


class ColorsModel(BaseModel):
    dominant: List[str]
    mood: str


class EntrySummary(BaseModel):
    id: str
    preview_url: Optional[str] = None
    display_url: Optional[str] = None
    caption: str
    subjects: List[str]
    style: List[str]
    status: str
    accuracy: Optional[str] = None
    search_tests: List[SearchTestModel]
    blacklisted: bool
    created_at: str


class EntryListResponse(BaseModel):
    entries: List[EntrySummary]
    total: int


class EntryDetail(BaseModel):
    id: str
    preview_url: Optional[str] = None
    display_url: Optional[str] = None
    caption: str
    subjects: List[str]
    style: List[str]
    colors: ColorsModel
    mood: List[str]
    context: List[str]
    composition: str
    lighting: str
    queries: List[str]
    review: ReviewModel
    blacklisted: bool
    created_at: str


class SearchTestRequest(BaseModel):
    query: str

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v


class SearchTestHit(BaseModel):
    id: str
    preview_url: Optional[str] = None
    caption: str


class SearchTestResponse(BaseModel):
    test: SearchTestModel
    results: List[SearchTestHit]


class AccuracyRequest(BaseModel):
    accuracy: str
    notes: Optional[str] = None
    status: Optional[str] = None

    @field_validator('accuracy')
    @classmethod
    def accuracy_must_be_valid(cls, v):
        if v not in ACCURACY_RATINGS:
            raise ValueError(f'accuracy must be one of: {list(ACCURACY_RATINGS)}')
        return v

    @field_validator('status')
    @classmethod
    def status_must_be_valid(cls, v):
        if v is not None and v not in REVIEW_STATUSES:
            raise ValueError(f'status must be one of: {list(REVIEW_STATUSES)}')
        return v


class AccuracyResponse(BaseModel):
    success: bool
    review: ReviewModel


class BlacklistRequest(BaseModel):
    blacklisted: bool


class BlacklistResponse(BaseModel):
    success: bool
    blacklisted: bool


class SearchabilityModel(BaseModel):
    avg_score: Optional[float] = None
    total_tests: int


class StatsResponse(BaseModel):
    total: int
    reviewed: int
    pending: int
    approved: int
    flagged: int
    blacklisted: int
    accuracy: Dict[str, int]
    searchability: SearchabilityModel
    vectors: int


class RefreshResponse(BaseModel):
    success: bool
    total: int


class NextEntryResponse(BaseModel):
    entry: Optional[EntryDetail] = None
    remaining: int


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None


def validate_orientation(value: Optional[str]) -> Optional[str]:
    """Query-string orientation check for the single search route."""
    if value is not None and value not in ORIENTATIONS:
        raise ValueError(f'orientation must be one of: {list(ORIENTATIONS)}')
    return value
