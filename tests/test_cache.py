"""Tests for the cache stores and the cache-aside wrapper."""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from orchestration.cache import (
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    ResponseCache,
    cache_keys,
    make_key,
)


class BrokenStore(CacheStore):
    """Store whose every round trip fails."""

    async def get(self, key):
        raise ConnectionError("store unreachable")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("store unreachable")

    async def delete(self, key):
        raise ConnectionError("store unreachable")

    async def delete_pattern(self, pattern):
        raise ConnectionError("store unreachable")

    async def exists(self, key):
        raise ConnectionError("store unreachable")


@pytest.fixture
def clock(fake_clock):
    return fake_clock


@pytest.fixture
def store(clock):
    return MemoryCacheStore(max_size=16, clock=clock)


@pytest.fixture
def cache(store):
    return ResponseCache(store)


class TestMemoryCacheStore:
    @pytest.mark.asyncio
    async def test_set_get_roundtrip(self, store):
        await store.set("k", b"v")
        assert await store.get("k") == b"v"
        assert await store.exists("k")

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.get("nope") is None
        assert not await store.exists("nope")

    @pytest.mark.asyncio
    async def test_ttl_expiry(self, store, clock):
        await store.set("k", b"v", ttl=60)
        clock.advance(59)
        assert await store.get("k") == b"v"
        clock.advance(1)
        assert await store.get("k") is None
        assert not await store.exists("k")

    @pytest.mark.asyncio
    async def test_zero_ttl_never_expires(self, store, clock):
        await store.set("k", b"v", ttl=0)
        clock.advance(10 ** 9)
        assert await store.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_overwrite_refreshes_expiry(self, store, clock):
        await store.set("k", b"old", ttl=10)
        clock.advance(8)
        await store.set("k", b"new", ttl=10)
        clock.advance(8)
        assert await store.get("k") == b"new"

    @pytest.mark.asyncio
    async def test_delete_pattern(self, store):
        for page in (1, 2, 3):
            await store.set(f"recipe:search:pasta:{page}", b"x")
        await store.set("recipe:search:pizza:1", b"x")
        await store.set("recipe:42", b"x")

        removed = await store.delete_pattern("recipe:search:pasta:*")

        assert removed == 3
        assert await store.get("recipe:search:pizza:1") == b"x"
        assert await store.get("recipe:42") == b"x"
        assert await store.get("recipe:search:pasta:2") is None

    @pytest.mark.asyncio
    async def test_eviction_keeps_size_bounded(self, clock):
        small = MemoryCacheStore(max_size=2, clock=clock)
        await small.set("a", b"1", ttl=10)
        await small.set("b", b"2", ttl=100)
        await small.set("c", b"3", ttl=100)
        assert len(small) == 2
        # "a" expires first, so it is the one evicted
        assert await small.get("a") is None
        assert await small.get("c") == b"3"


class TestRedisCacheStore:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=b'{"a":1}')
        client.set = AsyncMock()
        client.delete = AsyncMock(return_value=2)
        client.exists = AsyncMock(return_value=1)
        return client

    @pytest.mark.asyncio
    async def test_set_with_and_without_ttl(self, client):
        store = RedisCacheStore(client)
        await store.set("k", b"v", ttl=30)
        client.set.assert_awaited_with("k", b"v", ex=30)
        await store.set("k", b"v")
        client.set.assert_awaited_with("k", b"v")

    @pytest.mark.asyncio
    async def test_get_and_exists(self, client):
        store = RedisCacheStore(client)
        assert await store.get("k") == b'{"a":1}'
        assert await store.exists("k") is True

    @pytest.mark.asyncio
    async def test_delete_pattern_scans_then_deletes(self, client):
        async def scan_iter(match):
            for key in (b"recipe:search:x:1", b"recipe:search:x:2"):
                yield key

        client.scan_iter = scan_iter
        store = RedisCacheStore(client)

        assert await store.delete_pattern("recipe:search:x:*") == 2
        client.delete.assert_awaited_once_with(b"recipe:search:x:1", b"recipe:search:x:2")

    @pytest.mark.asyncio
    async def test_delete_pattern_without_matches(self, client):
        async def scan_iter(match):
            return
            yield  # pragma: no cover

        client.scan_iter = scan_iter
        store = RedisCacheStore(client)
        assert await store.delete_pattern("none:*") == 0
        client.delete.assert_not_awaited()


class TestWithCache:
    @pytest.mark.asyncio
    async def test_producer_called_once_for_repeated_key(self, cache):
        producer = AsyncMock(return_value={"results": [1, 2, 3]})

        first = await cache.with_cache("recipe:search:pasta:1", producer, ttl=60)
        second = await cache.with_cache("recipe:search:pasta:1", producer, ttl=60)

        assert first == second == {"results": [1, 2, 3]}
        producer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_producer_is_not_cached(self, cache, store):
        producer = AsyncMock(side_effect=[RuntimeError("upstream down"), {"ok": True}])

        with pytest.raises(RuntimeError, match="upstream down"):
            await cache.with_cache("k", producer, ttl=60)
        assert await store.get("k") is None

        assert await cache.with_cache("k", producer, ttl=60) == {"ok": True}
        assert producer.await_count == 2

    @pytest.mark.asyncio
    async def test_ttl_respected(self, cache, store, clock):
        producer = AsyncMock(side_effect=[{"v": 1}, {"v": 2}])

        assert await cache.with_cache("k", producer, ttl=30) == {"v": 1}
        clock.advance(31)
        assert await store.get("k") is None
        assert await cache.with_cache("k", producer, ttl=30) == {"v": 2}

    @pytest.mark.asyncio
    async def test_falsy_values_are_cache_hits(self, cache):
        producer = AsyncMock(return_value=[])
        await cache.with_cache("empty", producer)
        assert await cache.with_cache("empty", producer) == []
        producer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self, cache):
        with pytest.raises(ValueError):
            await cache.with_cache("", AsyncMock())

    @pytest.mark.asyncio
    async def test_unreachable_store_is_transparent(self):
        cache = ResponseCache(BrokenStore())
        producer = AsyncMock(return_value={"fresh": True})

        assert await cache.with_cache("k", producer, ttl=60) == {"fresh": True}
        assert await cache.with_cache("k", producer, ttl=60) == {"fresh": True}
        assert producer.await_count == 2

    @pytest.mark.asyncio
    async def test_unserializable_result_still_returned(self, cache, store):
        value = {"when": object()}
        result = await cache.with_cache("k", AsyncMock(return_value=value))
        assert result is value
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_treated_as_miss(self, cache, store):
        await store.set("k", b"{not json")
        producer = AsyncMock(return_value={"ok": 1})
        assert await cache.with_cache("k", producer) == {"ok": 1}
        assert json.loads(await store.get("k")) == {"ok": 1}

    @pytest.mark.asyncio
    async def test_pydantic_results_are_stored_as_json(self, cache, store):
        from orchestration.operations import SearchParams

        params = SearchParams(query="pasta", cuisine="italian")
        await cache.with_cache("k", AsyncMock(return_value=params))
        stored = json.loads(await store.get("k"))
        assert stored["query"] == "pasta"
        assert stored["cuisine"] == "italian"

    @pytest.mark.asyncio
    async def test_model_results_keep_their_type_on_hit(self, cache):
        from orchestration.operations import SearchParams

        producer = AsyncMock(return_value=SearchParams(query="pasta", cuisine="italian"))

        first = await cache.with_cache("k", producer, model=SearchParams)
        second = await cache.with_cache("k", producer, model=SearchParams)

        assert isinstance(second, SearchParams)
        assert first == second
        assert second.query == "pasta"
        producer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_model_results_without_model_are_json_on_both_calls(self, cache):
        from orchestration.operations import SearchParams

        producer = AsyncMock(return_value=SearchParams(query="pasta"))

        first = await cache.with_cache("k", producer)
        second = await cache.with_cache("k", producer)

        assert isinstance(first, dict)
        assert first == second

    @pytest.mark.asyncio
    async def test_entry_that_no_longer_fits_model_is_recomputed(self, cache, store):
        from orchestration.operations import SearchParams

        await store.set("k", b'{"unexpected": true}')
        producer = AsyncMock(return_value=SearchParams(query="soup"))

        assert (await cache.with_cache("k", producer, model=SearchParams)).query == "soup"
        producer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ttl_callable_sees_the_result(self, cache, store, clock):
        producer = AsyncMock(side_effect=[{"ai": False}, {"ai": True}])

        def ttl(value):
            return 600 if value["ai"] else 10

        await cache.with_cache("k", producer, ttl=ttl)
        clock.advance(11)
        assert await store.get("k") is None

        await cache.with_cache("k", producer, ttl=ttl)
        clock.advance(599)
        assert json.loads(await store.get("k")) == {"ai": True}

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, store):
        await store.set("recipe:search:pasta:1", b"1")
        await store.set("recipe:search:pasta:2", b"1")
        assert await cache.invalidate("recipe:search:pasta:*") == 2

    @pytest.mark.asyncio
    async def test_invalidate_on_broken_store_returns_zero(self):
        cache = ResponseCache(BrokenStore())
        assert await cache.invalidate("anything:*") == 0


class TestKeys:
    def test_make_key_normalizes(self):
        a = make_key("ai:search", {"q": "  Chicken   Curry ", "page": 1, "diet": None})
        b = make_key("ai:search", {"page": 1, "q": "chicken curry"})
        assert a == b

    def test_make_key_distinguishes_inputs_and_flags(self):
        base = make_key("search", {"q": "pasta"})
        assert base != make_key("search", {"q": "pizza"})
        assert base != make_key("search", {"q": "pasta"}, {"ai": True})
        assert make_key("search", {"q": "pasta"}, {"ai": True}) != make_key("search", {"q": "pasta"}, {"ai": False})

    def test_list_params_order_insensitive(self):
        assert make_key("r", {"i": ["egg", "Tomato"]}) == make_key("r", {"i": ["tomato", "egg"]})

    def test_glob_characters_stripped(self):
        assert "*" not in cache_keys.ai_search("pasta*")

    def test_search_pattern_matches_pages(self):
        import fnmatch

        pattern = cache_keys.recipe_search_pattern("Pasta")
        assert fnmatch.fnmatchcase(cache_keys.recipe_search("pasta", 3), pattern)
        assert fnmatch.fnmatchcase(cache_keys.recipe_search("pasta", 1, {"diet": "vegan"}), pattern)
        assert not fnmatch.fnmatchcase(cache_keys.recipe_search("pasta salad", 1), pattern)
