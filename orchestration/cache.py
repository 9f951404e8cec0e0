"""Cache-aside layer for expensive upstream calls.

CacheStore – the narrow key-value contract (bytes in, bytes out, per-entry TTL).
MemoryCacheStore – asyncio-safe in-process store with absolute expiry.
RedisCacheStore – shared store backed by ``redis.asyncio``.
ResponseCache – JSON values on top of a store, plus ``with_cache``.

Caching is an optimization only: store failures are logged and the caller
continues as if the entry were missing.
"""

import asyncio
import fnmatch
import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from core import monitoring
from core.logging import logger

__all__ = [
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "ResponseCache",
    "cache_keys",
    "make_key",
    "create_cache_store",
    "SEARCH_TTL",
    "RECIPE_TTL",
    "AI_TTL",
    "ANALYSIS_TTL",
    "WEATHER_TTL",
]

T = TypeVar("T")

SEARCH_TTL = 30 * 60  # query-shaped, volatile
AI_TTL = 30 * 60
WEATHER_TTL = 60 * 60
RECIPE_TTL = 24 * 60 * 60  # identifier-keyed, stable
ANALYSIS_TTL = 24 * 60 * 60


class CacheStore(ABC):
    """Key-value store with per-entry TTL. A TTL of ``None`` or ``0`` never expires."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the count removed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...


class MemoryCacheStore(CacheStore):
    """Simple asyncio-safe TTL store kept in process memory."""

    def __init__(self, max_size: int = 4096, clock: Callable[[], float] = time.time) -> None:
        self._max_size = max_size
        self._clock = clock
        # key -> (expires_at or None, value)
        self._store: Dict[str, Tuple[Optional[float], bytes]] = {}
        self._lock = asyncio.Lock()

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    # ------------------------------------------------------------------
    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            expires_at, val = entry
            if self._expired(expires_at):
                del self._store[key]
                return None
            return val

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        async with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._evict()
            self._store[key] = (expires_at, value)

    def _evict(self) -> None:
        # Drop expired entries first, then the one closest to expiry.
        for k in [k for k, (exp, _) in self._store.items() if self._expired(exp)]:
            del self._store[k]
        if len(self._store) < self._max_size:
            return
        victim = min(
            self._store.items(),
            key=lambda kv: kv[1][0] if kv[1][0] is not None else float("inf"),
        )[0]
        self._store.pop(victim, None)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            matched = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in matched:
                del self._store[k]
            return len(matched)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    def __len__(self) -> int:
        return len(self._store)


class RedisCacheStore(CacheStore):
    """Store backed by a Redis server (``SET EX`` / ``SCAN MATCH``)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        import redis.asyncio as redis

        return cls(redis.Redis.from_url(url))

    async def get(self, key: str) -> Optional[bytes]:
        value = await self._client.get(key)
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        if ttl:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k async for k in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def close(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Cache-aside wrapper
# ---------------------------------------------------------------------------


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class ResponseCache:
    """JSON response cache over a CacheStore."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store

    async def get(self, key: str) -> Tuple[bool, Any]:
        """Return ``(hit, value)``. Store and decode failures count as a miss."""
        try:
            raw = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for '{key}': {e}")
            monitoring.record_cache("error")
            return False, None
        if raw is None:
            monitoring.record_cache("miss")
            return False, None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding undecodable cache entry '{key}': {e}")
            monitoring.record_cache("error")
            return False, None
        monitoring.record_cache("hit")
        return True, value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Best-effort write. Returns False when nothing was stored."""
        try:
            raw = json.dumps(_to_jsonable(value), separators=(",", ":")).encode("utf-8")
            await self.store.set(key, raw, ttl)
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for '{key}': {e}")
            monitoring.record_cache_write_failure()
            return False

    async def with_cache(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: Union[int, None, Callable[[T], Optional[int]]] = None,
        model: Optional[Type[BaseModel]] = None,
    ) -> T:
        """Return the cached value for ``key`` or compute, store and return it.

        The producer runs at most once and only on a miss. If it raises, the
        exception reaches the caller and nothing is written.

        A hit and a miss return the same shape: with ``model`` the stored JSON
        is validated back into that model, without it a pydantic result is
        handed back as its JSON form. ``ttl`` may be a callable over the
        produced value.
        """
        if not key:
            raise ValueError("cache key must be a non-empty string")

        hit, cached = await self.get(key)
        if hit:
            if model is None:
                logger.debug(f"Cache hit: {key}")
                return cached
            try:
                value = model.model_validate(cached)
                logger.debug(f"Cache hit: {key}")
                return value
            except ValidationError as e:
                logger.warning(f"Discarding cache entry '{key}' that no longer fits {model.__name__}: {e}")

        result = await producer()
        expiry = ttl(result) if callable(ttl) else ttl
        await self.set(key, result, expiry)
        return result if model is not None else _to_jsonable(result)

    async def delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete failed for '{key}': {e}")

    async def invalidate(self, pattern: str) -> int:
        """Drop every entry matching a glob pattern (e.g. ``recipe:search:pasta:*``)."""
        try:
            removed = await self.store.delete_pattern(pattern)
        except Exception as e:
            logger.warning(f"Cache invalidation failed for '{pattern}': {e}")
            return 0
        logger.info(f"Invalidated {removed} cache entries matching '{pattern}'")
        return removed


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

_WS = re.compile(r"\s+")
_GLOB_CHARS = re.compile(r"([*?\[\]])")


def _norm(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_norm(v) for v in value if v is not None))
    text = _WS.sub(" ", str(value).strip().lower())
    # ':' separates key segments and glob characters would break invalidation
    return _GLOB_CHARS.sub("", text).replace(":", "_")


def make_key(operation: str, params: Optional[Mapping[str, Any]] = None, flags: Optional[Mapping[str, Any]] = None) -> str:
    """Composite key: operation, normalized params, then option flags.

    Params are sorted by name and ``None``/empty values dropped, so
    ``{"q": " Pasta ", "page": 1}`` and ``{"page": 1, "q": "pasta"}`` collide.
    """
    parts = [operation]
    for source in (params or {}, flags or {}):
        items = [
            f"{name}={_norm(val)}"
            for name, val in sorted(source.items())
            if val is not None and val != "" and val != []
        ]
        if items:
            parts.append("&".join(items))
    return ":".join(parts)


class _CacheKeys:
    """Key builders shared by services; identical inputs collide by construction."""

    @staticmethod
    def recipe(recipe_id) -> str:
        return f"recipe:{recipe_id}"

    @staticmethod
    def recipe_search(term: str, page: int, filters: Optional[Mapping[str, Any]] = None) -> str:
        base = f"recipe:search:{_norm(term)}:{page}"
        return make_key(base, filters) if filters else base

    @staticmethod
    def recipe_search_pattern(term: str) -> str:
        return f"recipe:search:{_norm(term)}:*"

    @staticmethod
    def recipe_similar(recipe_id) -> str:
        return f"recipe:similar:{recipe_id}"

    @staticmethod
    def recipe_summary(recipe_id) -> str:
        return f"recipe:summary:{recipe_id}"

    @staticmethod
    def recipe_analysis(recipe_id) -> str:
        return f"recipe:analysis:{recipe_id}"

    @staticmethod
    def recipe_conversion(recipe_id, diet: str) -> str:
        return f"recipe:conversion:{recipe_id}:{_norm(diet)}"

    @staticmethod
    def autocomplete(query: str) -> str:
        return f"recipe:autocomplete:{_norm(query)}"

    @staticmethod
    def recipes_bulk(ids) -> str:
        return make_key("recipe:bulk", {"ids": list(ids)})

    @staticmethod
    def wine_pairing(food: str, max_price=None) -> str:
        return make_key("wine:pairing", {"food": food, "max_price": max_price})

    @staticmethod
    def wine_dishes(wine: str) -> str:
        return f"wine:dishes:{_norm(wine)}"

    @staticmethod
    def ai_search(query: str) -> str:
        return f"ai:search:{_norm(query)}"

    @staticmethod
    def recommendations(params: Mapping[str, Any]) -> str:
        return make_key("ai:recommend", params)

    @staticmethod
    def weather(params: Mapping[str, Any]) -> str:
        return make_key("weather", params)

    @staticmethod
    def weather_suggestions(params: Mapping[str, Any]) -> str:
        return make_key("weather:suggestions", params)


cache_keys = _CacheKeys()


def create_cache_store(settings) -> CacheStore:
    """Redis when ``REDIS_URL`` is configured, otherwise in-process memory."""
    if settings.REDIS_URL:
        logger.info("Using Redis cache store")
        return RedisCacheStore.from_url(settings.REDIS_URL)
    logger.info("REDIS_URL not set, using in-memory cache store")
    return MemoryCacheStore(max_size=settings.CACHE_MAX_ENTRIES)
