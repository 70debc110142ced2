"""
Media client: resolves image requests through the bank, an in-process
TTL cache and the configured providers.

Plan items are processed one after another so the cross-item `seen` set is
observed consistently; only the provider x orientation fan-out inside one
item runs concurrently.
"""

import asyncio
import logging
import math
import random
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set, Tuple

from ..core.config import (
    BANK_CONFIDENT_SCORE,
    FILL_FALLBACK_QUERIES,
    MEDIA_CACHE_TTL_SEC,
    SYNC_QUEUE_SIZE,
)
from ..core.tasks import BackgroundDispatcher
from ..util.logging import logger
from .providers import MediaProvider
from .types import (
    ORIENTATIONS,
    ImagePlan,
    ImageSearchOptions,
    ImageSearchResult,
    ImageSelection,
    ImageSource,
)

if TYPE_CHECKING:
    from ..bank.store import ImageBankStore
    from .normalize import QueryNormalizer

FILL_BATCH_SIZE = 5
FANOUT_BUFFER = 5  # extra images per request to absorb cross-block duplicates

CacheKey = Tuple[str, str, str]


class TTLCache:
    """Provider result cache keyed by (provider, orientation, query)."""

    def __init__(self, ttl_sec: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = ttl_sec
        self.clock = clock
        self._entries: Dict[CacheKey, Tuple[float, List[ImageSearchResult]]] = {}

    @staticmethod
    def make_key(provider: str, query: str, orientation: Optional[str]) -> CacheKey:
        return (provider, orientation or "any", query)

    def get(self, key: CacheKey) -> Optional[List[ImageSearchResult]]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, results = item
        if self.clock() > expires_at:
            del self._entries[key]
            return None
        return results

    def set(self, key: CacheKey, results: List[ImageSearchResult]) -> None:
        self._entries[key] = (self.clock() + self.ttl_sec, list(results))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class MediaClient:
    """Entry point for "get N images matching this description"."""

    def __init__(
        self,
        providers: Dict[str, MediaProvider],
        bank: Optional["ImageBankStore"] = None,
        normalizer: Optional["QueryNormalizer"] = None,
        cache_ttl_sec: float = MEDIA_CACHE_TTL_SEC,
        confident_score: float = BANK_CONFIDENT_SCORE,
        fill_queries: Optional[List[str]] = None,
        rng: Optional[random.Random] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers = dict(providers)
        self.bank = bank
        self.normalizer = normalizer
        self.confident_score = confident_score
        self.fill_queries = list(fill_queries) if fill_queries is not None else list(FILL_FALLBACK_QUERIES)
        self.rng = rng or random.Random()
        self.dispatcher = dispatcher or BackgroundDispatcher("bank-store", SYNC_QUEUE_SIZE)
        self.cache = TTLCache(cache_ttl_sec, clock)

        if not self.providers:
            logger.log_media_event("init", "no_providers", {
                "message": "No media provider credentials configured - image search disabled",
            }, logging.WARNING)
        else:
            logger.log_media_event("init", "success", {"providers": list(self.providers)})

    async def _normalize(self, query: str) -> str:
        """Canonical query string, or the raw query without a working normalizer."""
        if self.normalizer is None:
            return query
        try:
            result = await self.normalizer.normalize(query)
        except Exception as e:
            logger.log_media_event("normalize", "failed", {"query": query, "error": str(e)}, logging.WARNING)
            return query
        return result.query_string or query

    async def _bank_lookup(self, query: str, count: int, orientation: Optional[str]) -> Optional[List[ImageSearchResult]]:
        """Return bank results only for a confident match."""
        if self.bank is None:
            return None

        try:
            result = await self.bank.search(query, limit=count, orientation=orientation)
        except Exception as e:
            logger.log_media_event("bank_search", "failed", {"query": query, "error": str(e)}, logging.WARNING)
            return None

        if result.results and result.top_score >= self.confident_score:
            logger.log_media_event("bank_hit", "success", {
                "query": query,
                "count": len(result.results),
                "top_score": round(result.top_score, 4),
            })
            return [self.bank.to_search_result(hit.entry) for hit in result.results]

        if result.results:
            # Borderline semantic match: go to providers instead
            logger.log_media_event("bank_low_confidence", "fallthrough", {
                "query": query,
                "top_score": round(result.top_score, 4),
                "threshold": self.confident_score,
            })
        return None

    async def _cached_search(self, provider_name: str, query: str, orientation: Optional[str], count: int) -> List[ImageSearchResult]:
        key = TTLCache.make_key(provider_name, query, orientation)
        cached = self.cache.get(key)
        if cached is not None:
            logger.log_media_event("cache_hit", "success", {"provider": provider_name, "query": query}, logging.DEBUG)
            return cached[:count]

        provider = self.providers[provider_name]
        results = await provider.search(query, orientation=orientation, count=count)
        logger.log_media_event("provider_search", "success", {
            "provider": provider_name,
            "query": query,
            "orientation": orientation,
            "count": len(results),
        }, logging.DEBUG)

        self.cache.set(key, results)
        return results

    async def _store_in_bank(self, results: List[ImageSearchResult], query: str) -> None:
        """Queue results for bank storage and persistence; never fails the caller."""
        if self.bank is None or not results:
            return

        bank = self.bank
        batch = list(results)

        async def store_batch():
            stored = 0
            for result in batch:
                if await bank.store(result, query) is not None:
                    stored += 1
            if stored:
                await bank.sync()

        await self.dispatcher.submit(f"bank_store:{query[:40]}", store_batch)

    async def search(self, options: ImageSearchOptions) -> List[ImageSearchResult]:
        """Single-query path: bank, then cache, then provider."""
        query = await self._normalize(options.query)

        bank_results = await self._bank_lookup(query, options.count, options.orientation)
        if bank_results:
            return bank_results

        if options.provider not in self.providers:
            logger.log_media_event("provider_not_configured", "skipped", {"provider": options.provider}, logging.WARNING)
            return []

        key = TTLCache.make_key(options.provider, query, options.orientation)
        if self.cache.get(key) is not None:
            return await self._cached_search(options.provider, query, options.orientation, options.count)

        results = await self._cached_search(options.provider, query, options.orientation, options.count)
        await self._store_in_bank(results, query)
        return results

    async def execute_plan(self, plan: List[ImagePlan]) -> List[ImageSelection]:
        """Batch path: fill every plan item, deduplicating across the whole plan."""
        selections: List[ImageSelection] = []
        seen: Set[str] = set()

        for item in plan:
            try:
                await self._execute_item(item, seen, selections)
            except Exception as e:
                logger.log_media_event("plan_item_failed", "error", {
                    "block_id": item.block_id,
                    "query": item.search_query,
                    "error": str(e),
                }, logging.ERROR)

        return self._shuffle_by_block(selections)

    async def _execute_item(self, item: ImagePlan, seen: Set[str], selections: List[ImageSelection]) -> None:
        count = item.count
        if count <= 0:
            logger.log_media_event("plan_item_skipped", "empty", {"block_id": item.block_id}, logging.DEBUG)
            return

        mixed = item.orientation == "mixed"
        query = await self._normalize(item.search_query)
        added = 0

        def take(results: List[ImageSearchResult]) -> int:
            nonlocal added
            taken = 0
            for result in results:
                if added >= count:
                    break
                if result.key in seen:
                    continue
                seen.add(result.key)
                selections.append(ImageSelection(
                    block_id=item.block_id,
                    category=item.category,
                    placement=item.placement,
                    image=ImageSource(
                        url=result.display_url,
                        alt=result.title,
                        provider=result.provider,
                        provider_id=result.id,
                    ),
                ))
                added += 1
                taken += 1
            return taken

        # One embedding match cannot satisfy three orientations at once
        if not mixed:
            bank_results = await self._bank_lookup(query, count, item.orientation)
            if bank_results:
                take(bank_results)
                if added >= count:
                    return

        if not self.providers:
            logger.log_media_event("plan_item_skipped", "no_providers", {"block_id": item.block_id}, logging.WARNING)
            return

        provider_names = list(self.providers)
        orientations = list(ORIENTATIONS) if mixed else [item.orientation]
        total_requests = len(provider_names) * len(orientations)
        per_request = math.ceil(count / total_requests) + FANOUT_BUFFER

        batches = await asyncio.gather(*[
            self._cached_search(name, query, orientation, per_request)
            for name in provider_names
            for orientation in orientations
        ])

        batch_seen: Set[str] = set()
        unique: List[ImageSearchResult] = []
        for batch in batches:
            for result in batch:
                if result.key not in batch_seen:
                    batch_seen.add(result.key)
                    unique.append(result)

        await self._store_in_bank(unique, query)
        take(unique)

        if mixed and added < count:
            await self._fill(item, query, count - added, provider_names, take)

        if added < count:
            logger.log_media_event("plan_item_shortfall", "incomplete", {
                "block_id": item.block_id,
                "query": query,
                "requested": count,
                "selected": added,
            }, logging.WARNING)

    async def _fill(self, item: ImagePlan, query: str, remaining: int, provider_names: List[str], take) -> int:
        """Top up a mixed block with random orientation/provider draws over broadening queries."""
        fallbacks = [query, item.search_query, *self.fill_queries]
        filled = 0

        for attempt in range(remaining * 2):
            if filled >= remaining:
                break

            orientation = self.rng.choice(ORIENTATIONS)
            provider_name = self.rng.choice(provider_names)
            fill_query = fallbacks[min(attempt, len(fallbacks) - 1)]

            results = await self._cached_search(provider_name, fill_query, orientation, FILL_BATCH_SIZE)
            await self._store_in_bank(results, fill_query)
            filled += take(results)

        return filled

    def _shuffle_by_block(self, selections: List[ImageSelection]) -> List[ImageSelection]:
        """Shuffle within each block, keeping blocks in first-seen order."""
        groups: Dict[str, List[ImageSelection]] = {}
        for selection in selections:
            groups.setdefault(selection.block_id, []).append(selection)

        shuffled: List[ImageSelection] = []
        for group in groups.values():
            self.rng.shuffle(group)
            shuffled.extend(group)
        return shuffled

    async def flush(self) -> None:
        """Wait for queued bank stores, then persist the bank."""
        await self.dispatcher.drain()
        if self.bank is not None:
            await self.bank.sync()
