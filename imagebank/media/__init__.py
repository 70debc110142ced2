from .types import (
    ORIENTATIONS,
    PLAN_ORIENTATIONS,
    ImagePlan,
    ImageSearchOptions,
    ImageSearchResult,
    ImageSelection,
    ImageSource,
    MediaQueryIntent,
    NormalizeResult,
    orientation_of,
    parse_image_plan,
)
from .normalize import QueryNormalizer, build_query_string, enforce_rules

__all__ = [
    'ORIENTATIONS',
    'PLAN_ORIENTATIONS',
    'ImagePlan',
    'ImageSearchOptions',
    'ImageSearchResult',
    'ImageSelection',
    'ImageSource',
    'MediaQueryIntent',
    'NormalizeResult',
    'orientation_of',
    'parse_image_plan',
    'QueryNormalizer',
    'build_query_string',
    'enforce_rules',
]
