"""
Query normalization: free-text image requests -> canonical phrase/term intent.

The LLM only proposes phrases and terms; enforce_rules() makes the result
deterministic so identical requests share cache keys and embeddings.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from ..util.logging import logger
from .types import MediaQueryIntent, NormalizeResult

MAX_PHRASES = 2
MAX_TERMS = 8

STOPWORDS = frozenset([
    "a", "an", "the", "for", "with", "of", "to", "in", "on",
    "image", "photo", "picture", "hero", "background", "banner",
])

SYSTEM_PROMPT = """Extract visual search terms from the prompt for stock photo search.

Output JSON with:
- phrases: multi-word concepts (max 2), e.g. ["new york", "sushi restaurant"]
- terms: single words (max 8), e.g. ["warm", "modern"]

Rules:
- Keep multi-word concepts together as phrases
- Remove non-visual words: "hero", "image", "photo", "background", "for", "a", "the"
- Lowercase everything
- Sort alphabetically within each array

Examples:
- "hero image for sushi restaurant" -> { "phrases": ["sushi restaurant"], "terms": [] }
- "warm cozy coffee shop in new york" -> { "phrases": ["coffee shop", "new york"], "terms": ["cozy", "warm"] }
- "modern minimal tech startup" -> { "phrases": ["tech startup"], "terms": ["minimal", "modern"] }
- "professional team portrait" -> { "phrases": [], "terms": ["professional", "team"] }"""

BATCH_SYSTEM_PROMPT = """Extract visual search terms from multiple prompts for stock photo search.

For each query, output:
- phrases: multi-word concepts (max 2 per query)
- terms: single words (max 8 per query)

Rules:
- Keep multi-word concepts together as phrases
- Remove non-visual words: "hero", "image", "photo", "background", "for", "a", "the"
- Lowercase everything
- Sort alphabetically within each array
- Return results in the same order as input queries"""

INTENT_SCHEMA = {
    "type": "object",
    "properties": {
        "phrases": {"type": "array", "items": {"type": "string"}},
        "terms": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["phrases", "terms"],
}

BATCH_SCHEMA = {
    "type": "object",
    "properties": {"results": {"type": "array", "items": INTENT_SCHEMA}},
    "required": ["results"],
}


def _clean(values: Iterable[str]) -> List[str]:
    """Lowercase, trim, drop empties and dedupe preserving first occurrence."""
    seen = []
    for value in values:
        if not isinstance(value, str):
            continue
        cleaned = value.lower().strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def enforce_rules(raw: MediaQueryIntent) -> MediaQueryIntent:
    """Apply the deterministic normalization rules to a raw intent."""
    phrases = sorted(_clean(raw.phrases))[:MAX_PHRASES]
    terms = sorted(t for t in _clean(raw.terms) if t not in STOPWORDS)[:MAX_TERMS]
    return MediaQueryIntent(phrases=phrases, terms=terms)


def build_query_string(intent: MediaQueryIntent) -> str:
    """Phrases first, then terms, comma separated."""
    return ", ".join([*intent.phrases, *intent.terms])


def fallback_result(query: str) -> NormalizeResult:
    """Treat the whole lowercased request as a single term."""
    lowered = query.lower().strip()
    return NormalizeResult(intent=MediaQueryIntent(phrases=[], terms=[lowered]), query_string=lowered)


def _intent_from_payload(payload: Any) -> Optional[MediaQueryIntent]:
    if not isinstance(payload, dict):
        return None
    phrases = payload.get("phrases", [])
    terms = payload.get("terms", [])
    if not isinstance(phrases, list) or not isinstance(terms, list):
        return None
    return MediaQueryIntent(phrases=phrases, terms=terms)


class QueryNormalizer:
    """LLM-backed normalizer using an Ollama chat model with JSON-schema output."""

    def __init__(self, model: str = "llama3.2:latest", host: str = None, client=None):
        """
        Args:
            model: Ollama model name
            host: Ollama host URL (default: library default)
            client: Pre-built ollama.AsyncClient, mainly for tests
        """
        if client is None:
            import ollama
            client = ollama.AsyncClient(host=host) if host else ollama.AsyncClient()
        self.client = client
        self.model = model

    async def _complete(self, system_prompt: str, user_content: str, schema: Dict[str, Any]) -> Optional[str]:
        response = await self.client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            format=schema,
            options={"temperature": 0},
        )
        return response.message.content if response and response.message else None

    async def normalize(self, query: str) -> NormalizeResult:
        """Normalize one request; degrades to a single-term intent on empty output."""
        content = await self._complete(SYSTEM_PROMPT, query, INTENT_SCHEMA)
        if not content:
            return fallback_result(query)

        try:
            raw = _intent_from_payload(json.loads(content))
        except json.JSONDecodeError:
            raw = None

        if raw is None:
            logger.log_media_event("normalize", "unparseable", {"query": query, "content": content[:80]})
            return fallback_result(query)

        intent = enforce_rules(raw)
        if not intent.phrases and not intent.terms:
            return fallback_result(query)

        return NormalizeResult(intent=intent, query_string=build_query_string(intent))

    async def __call__(self, query: str) -> NormalizeResult:
        return await self.normalize(query)

    async def batch(self, queries: List[str]) -> Dict[str, NormalizeResult]:
        """Normalize many requests in one LLM call.

        Queries the model drops or garbles are absent from the result; callers
        fall back to the original text for those.
        """
        results: Dict[str, NormalizeResult] = {}
        unique = list(dict.fromkeys(queries))
        if not unique:
            return results

        user_content = "\n".join(f'{i + 1}. "{q}"' for i, q in enumerate(unique))
        content = await self._complete(BATCH_SYSTEM_PROMPT, user_content, BATCH_SCHEMA)
        if not content:
            return results

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            logger.log_media_event("normalize_batch", "unparseable", {"queries": len(unique)})
            return results

        items = parsed.get("results", []) if isinstance(parsed, dict) else []
        for query, payload in zip(unique, items):
            raw = _intent_from_payload(payload)
            if raw is None:
                continue
            intent = enforce_rules(raw)
            results[query] = NormalizeResult(intent=intent, query_string=build_query_string(intent))

        return results
