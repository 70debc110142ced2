"""
Media client tests: bank gating, provider cache, plan execution and fill loop.
"""

import random
from collections import Counter
from unittest.mock import AsyncMock, MagicMock

from imagebank.bank.types import BankHit, BankSearchResult
from imagebank.media.client import FILL_BATCH_SIZE, MediaClient, TTLCache
from imagebank.media.types import (
    ImagePlan,
    ImageSearchOptions,
    MediaQueryIntent,
    NormalizeResult,
)

from conftest import FakeAnalyzer, FakeProvider, build_store, make_image, run

WIDE = {"width": 1600, "height": 900}
TALL = {"width": 900, "height": 1600}
SQUARE = {"width": 1000, "height": 1000}


def catalog(prefix, count, provider="unsplash", **size):
    return [make_image(f"{prefix}{i}", provider=provider, **(size or WIDE)) for i in range(count)]


class ByQueryProvider(FakeProvider):
    """Serves a different catalog per query string."""

    def __init__(self, name, catalogs):
        super().__init__(name, [])
        self.catalogs = catalogs

    async def search(self, query, orientation=None, count=None):
        self.catalog = self.catalogs.get(query, [])
        return await super().search(query, orientation, count)


def make_client(providers, **kwargs):
    kwargs.setdefault("rng", random.Random(1234))
    kwargs.setdefault("fill_queries", ["restaurant interior", "food photography"])
    return MediaClient({p.name: p for p in providers}, **kwargs)


class TestTTLCache:

    def test_key_uses_any_for_missing_orientation(self):
        assert TTLCache.make_key("pexels", "beach", None) == ("pexels", "any", "beach")
        assert TTLCache.make_key("pexels", "beach", "square") == ("pexels", "square", "beach")

    def test_entries_expire(self):
        now = [0.0]
        cache = TTLCache(ttl_sec=900, clock=lambda: now[0])
        key = TTLCache.make_key("unsplash", "q", None)
        cache.set(key, [make_image("a")])

        now[0] = 899.0
        assert [r.id for r in cache.get(key)] == ["a"]

        now[0] = 901.0
        assert cache.get(key) is None
        assert len(cache) == 0


class TestSearch:

    def test_provider_results_without_bank(self):
        provider = FakeProvider("unsplash", catalog("u", 5))
        client = make_client([provider])

        results = run(client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3)))

        assert [r.id for r in results] == ["u0", "u1", "u2"]
        assert provider.calls == [("beach", None, 3)]

    def test_unknown_provider_returns_empty(self):
        client = make_client([FakeProvider("unsplash", catalog("u", 2))])

        assert run(client.search(ImageSearchOptions(query="beach", provider="getty"))) == []

    def test_repeat_search_served_from_cache(self):
        now = [0.0]
        provider = FakeProvider("unsplash", catalog("u", 5))
        client = make_client([provider], clock=lambda: now[0])
        options = ImageSearchOptions(query="beach", provider="unsplash", count=5)

        async def scenario():
            first = await client.search(options)
            second = await client.search(ImageSearchOptions(query="beach", provider="unsplash", count=2))
            now[0] = 1000.0
            await client.search(options)
            return first, second

        first, second = run(scenario())

        assert len(first) == 5
        assert [r.id for r in second] == ["u0", "u1"]
        assert len(provider.calls) == 2

    def test_confident_bank_hit_skips_providers(self, storage):
        image = make_image("b1")
        bank = build_store(storage=storage, analyze=FakeAnalyzer({image.display_url: "sunset over the beach"}))
        provider = FakeProvider("unsplash", catalog("u", 5))
        client = make_client([provider], bank=bank)

        async def scenario():
            await bank.load()
            await bank.store(image, "beach")
            return await client.search(ImageSearchOptions(query="sunset over the beach", provider="unsplash"))

        results = run(scenario())

        assert [r.key for r in results] == ["unsplash:b1"]
        assert provider.calls == []

    def test_borderline_bank_hit_falls_through(self, storage):
        entry_bank = build_store(storage=storage)
        image = make_image("b1")
        run(entry_bank.load())
        entry = run(entry_bank.store(image, "beach"))

        bank = MagicMock()
        bank.search = AsyncMock(return_value=BankSearchResult(results=[BankHit(entry, 0.89)], top_score=0.89))
        bank.store = AsyncMock(return_value=None)
        provider = FakeProvider("unsplash", catalog("u", 3))
        client = make_client([provider], bank=bank)

        results = run(client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3)))

        assert [r.id for r in results] == ["u0", "u1", "u2"]
        bank.to_search_result.assert_not_called()

    def test_bank_failure_counts_as_miss(self):
        bank = MagicMock()
        bank.search = AsyncMock(side_effect=RuntimeError("not loaded"))
        bank.store = AsyncMock(return_value=None)
        client = make_client([FakeProvider("unsplash", catalog("u", 2))], bank=bank)

        results = run(client.search(ImageSearchOptions(query="beach", provider="unsplash", count=2)))

        assert len(results) == 2

    def test_provider_results_are_stored_in_bank(self, storage):
        bank = build_store(storage=storage)
        client = make_client([FakeProvider("unsplash", catalog("u", 3))], bank=bank)

        async def scenario():
            await bank.load()
            await client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3))
            await client.flush()

        run(scenario())

        assert set(bank.entries) == {"unsplash:u0", "unsplash:u1", "unsplash:u2"}
        assert bank.entries["unsplash:u0"].queries == ["beach"]
        assert bank.dirty is False
        assert "bank/bank.json" in storage.objects

    def test_stored_results_are_persisted_without_flush(self, storage):
        bank = build_store(storage=storage)
        client = make_client([FakeProvider("unsplash", catalog("u", 3))], bank=bank)

        async def scenario():
            await bank.load()
            await client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3))
            await client.dispatcher.drain()

        run(scenario())

        assert bank.dirty is False
        assert "bank/bank.json" in storage.objects
        assert "bank/bank.index" in storage.objects

    def test_repeat_query_served_from_bank_after_store(self, storage):
        bank = build_store(storage=storage)
        provider = FakeProvider("unsplash", catalog("u", 3))
        client = make_client([provider], bank=bank)

        async def scenario():
            await bank.load()
            await client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3))
            await client.dispatcher.drain()
            client.cache.clear()
            return await client.search(ImageSearchOptions(query="beach", provider="unsplash", count=3))

        results = run(scenario())

        assert sorted(r.id for r in results) == ["u0", "u1", "u2"]
        assert len(provider.calls) == 1

    def test_normalized_query_is_used(self):
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(return_value=NormalizeResult(
            intent=MediaQueryIntent(phrases=["sushi restaurant"], terms=[]),
            query_string="sushi restaurant",
        ))
        provider = FakeProvider("unsplash", catalog("u", 2))
        client = make_client([provider], normalizer=normalizer)

        run(client.search(ImageSearchOptions(query="hero image for sushi restaurant", provider="unsplash", count=2)))

        assert provider.calls[0][0] == "sushi restaurant"

    def test_normalizer_failure_uses_raw_query(self):
        normalizer = MagicMock()
        normalizer.normalize = AsyncMock(side_effect=ConnectionError("ollama down"))
        provider = FakeProvider("unsplash", catalog("u", 2))
        client = make_client([provider], normalizer=normalizer)

        run(client.search(ImageSearchOptions(query="Mountain Lake", provider="unsplash", count=1)))

        assert provider.calls[0][0] == "Mountain Lake"


class TestExecutePlan:

    def test_fanout_covers_every_provider(self):
        unsplash = FakeProvider("unsplash", catalog("u", 5))
        pexels = FakeProvider("pexels", catalog("p", 5, provider="pexels"))
        client = make_client([unsplash, pexels])

        selections = run(client.execute_plan([ImagePlan(block_id="hero", search_query="cafe", count=4)]))

        assert len(selections) == 4
        # ceil(4 / 2) + 5 images per provider request
        assert unsplash.calls == [("cafe", "horizontal", 7)]
        assert pexels.calls == [("cafe", "horizontal", 7)]
        assert all(s.block_id == "hero" for s in selections)

    def test_no_duplicates_across_plan(self):
        provider = FakeProvider("unsplash", catalog("u", 3))
        client = make_client([provider])
        plan = [
            ImagePlan(block_id="one", search_query="cafe", count=2),
            ImagePlan(block_id="two", search_query="cafe", count=2),
        ]

        selections = run(client.execute_plan(plan))

        ids = [s.image.provider_id for s in selections]
        assert len(ids) == len(set(ids)) == 3
        assert Counter(s.block_id for s in selections) == {"one": 2, "two": 1}

    def test_duplicates_within_fanout_collapse(self):
        shared = catalog("same", 2)
        first = FakeProvider("unsplash", shared)
        second = FakeProvider("mirror", shared)
        client = make_client([first, second])

        selections = run(client.execute_plan([ImagePlan(block_id="b", search_query="q", count=5)]))

        assert sorted(s.image.provider_id for s in selections) == ["same0", "same1"]

    def test_selection_shape(self):
        client = make_client([FakeProvider("unsplash", catalog("u", 1))])
        plan = [ImagePlan(block_id="gallery", search_query="q", placement="gallery", category="ambient")]

        selection = run(client.execute_plan(plan))[0]

        assert selection.category == "ambient"
        assert selection.placement == "gallery"
        assert selection.image.url == make_image("u0").display_url
        assert selection.image.alt == "Image u0"
        assert selection.to_dict()["image"]["providerId"] == "u0"

    def test_mixed_shortfall_runs_fill_and_never_raises(self):
        images = [
            make_image("w0", **WIDE), make_image("w1", **WIDE),
            make_image("t0", **TALL), make_image("s0", **SQUARE),
        ]
        provider = FakeProvider("unsplash", images)
        client = make_client([provider])

        selections = run(client.execute_plan([
            ImagePlan(block_id="mixed", search_query="Cafe Interior", orientation="mixed", count=6),
        ]))

        assert sorted(s.image.provider_id for s in selections) == ["s0", "t0", "w0", "w1"]
        initial = provider.calls[:3]
        assert {c[1] for c in initial} == {"horizontal", "vertical", "square"}
        fill_calls = provider.calls[3:]
        # remaining = 2 -> at most 4 fill attempts, batches of 5
        assert 0 < len(fill_calls) <= 4
        assert all(c[2] == FILL_BATCH_SIZE for c in fill_calls)

    def test_fill_queries_broaden_by_attempt(self):
        provider = FakeProvider("unsplash", [])
        client = make_client([provider], fill_queries=["restaurant interior", "food photography"])

        run(client.execute_plan([ImagePlan(block_id="m", search_query="Odd Query", orientation="mixed", count=3)]))

        # The first two attempts reuse the cached fan-out query; later ones go generic
        fill_queries = [c[0] for c in provider.calls[3:]]
        assert fill_queries[0] == "restaurant interior"
        assert set(fill_queries) == {"restaurant interior", "food photography"}
        assert 2 <= len(fill_queries) <= 4

    def test_mixed_fill_can_complete_block(self):
        generic = catalog("gw", 5, **WIDE) + catalog("gt", 5, **TALL) + catalog("gs", 5, **SQUARE)
        provider = ByQueryProvider("unsplash", {
            "q": catalog("w", 2, **WIDE),
            "restaurant interior": generic,
        })
        client = make_client([provider])

        selections = run(client.execute_plan([
            ImagePlan(block_id="m", search_query="q", orientation="mixed", count=6),
        ]))

        assert len(selections) == 6
        assert len({s.image.provider_id for s in selections}) == 6
        assert {"w0", "w1"} <= {s.image.provider_id for s in selections}

    def test_failing_item_does_not_stop_plan(self):
        class FlakyProvider(FakeProvider):
            async def search(self, query, orientation=None, count=None):
                if query == "boom":
                    raise RuntimeError("provider exploded")
                return await super().search(query, orientation, count)

        client = make_client([FlakyProvider("unsplash", catalog("u", 4))])
        plan = [
            ImagePlan(block_id="bad", search_query="boom", count=2),
            ImagePlan(block_id="good", search_query="fine", count=2),
        ]

        selections = run(client.execute_plan(plan))

        assert [s.block_id for s in selections] == ["good", "good"]

    def test_shuffle_keeps_block_order(self):
        client = make_client([ByQueryProvider("unsplash", {
            "q1": catalog("a", 6), "q2": catalog("b", 6), "q3": catalog("c", 6),
        })])
        plan = [
            ImagePlan(block_id="a", search_query="q1", count=4),
            ImagePlan(block_id="b", search_query="q2", count=4),
            ImagePlan(block_id="c", search_query="q3", count=4),
        ]

        selections = run(client.execute_plan(plan))

        blocks = [s.block_id for s in selections]
        assert blocks == ["a"] * 4 + ["b"] * 4 + ["c"] * 4
        assert all(s.image.provider_id.startswith(s.block_id) for s in selections)

    def test_vertical_item_only_requests_vertical(self):
        provider = FakeProvider("unsplash", catalog("w", 3, **WIDE) + catalog("t", 3, **TALL))
        client = make_client([provider])

        selections = run(client.execute_plan([
            ImagePlan(block_id="side", search_query="q", orientation="vertical", count=2),
        ]))

        assert provider.calls[0][1] == "vertical"
        assert all(s.image.provider_id.startswith("t") for s in selections)

    def test_no_providers_yields_empty_plan(self):
        client = MediaClient({})

        assert run(client.execute_plan([ImagePlan(block_id="a", search_query="q")])) == []

    def test_confident_bank_results_fill_item(self, storage):
        image = make_image("b1")
        bank = build_store(storage=storage, analyze=FakeAnalyzer({image.display_url: "latte art close up"}))
        provider = FakeProvider("unsplash", catalog("u", 3))
        client = make_client([provider], bank=bank)

        async def scenario():
            await bank.load()
            await bank.store(image, "coffee")
            return await client.execute_plan([ImagePlan(block_id="a", search_query="latte art close up", count=1)])

        selections = run(scenario())

        assert [s.image.provider_id for s in selections] == ["b1"]
        assert provider.calls == []

    def test_zero_count_item_is_skipped(self):
        provider = FakeProvider("unsplash", catalog("u", 3))
        client = make_client([provider])

        selections = run(client.execute_plan([
            ImagePlan(block_id="empty", search_query="cafe", count=0),
            ImagePlan(block_id="hero", search_query="cafe", count=1),
        ]))

        assert [s.block_id for s in selections] == ["hero"]
        assert len(provider.calls) == 1
