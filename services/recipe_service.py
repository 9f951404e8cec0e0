"""Spoonacular recipe lookups behind the response cache and the key rotator.

These are deterministic single-provider calls: no AI, no fallback chain.
A 402 from the upstream (status or ``code`` in the body) means the key is out
of daily quota; the key is marked exhausted and the next one is tried.
"""
from typing import Any, Dict, Iterable, List, Optional, Set

import httpx

from core.errors import ConfigError, CredentialsExhaustedError, UpstreamError
from core.logging import logger
from orchestration.cache import RECIPE_TTL, SEARCH_TTL, ResponseCache, cache_keys
from orchestration.credentials import CredentialRotator

QUOTA_STATUS = 402


class RecipeService:
    def __init__(
        self,
        cache: ResponseCache,
        rotator: CredentialRotator,
        base_url: str = "https://api.spoonacular.com",
        timeout: float = 10.0,
    ):
        self.cache = cache
        self.rotator = rotator
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        logger.info(f"RecipeService initialized with {len(rotator)} API key(s)")

    @classmethod
    def from_config(cls, config, cache: ResponseCache) -> "RecipeService":
        app = config.app
        rotator = CredentialRotator.from_env(
            app.SPOONACULAR_KEY_PREFIX,
            daily_limit=app.SPOONACULAR_DAILY_LIMIT,
            name="spoonacular",
            rollover=app.CREDENTIAL_DAILY_ROLLOVER,
        )
        return cls(cache, rotator, base_url=app.SPOONACULAR_BASE_URL, timeout=app.HTTP_TIMEOUT_SECONDS)

    # ------------------------------------------------------------------
    # Upstream call with key rotation
    # ------------------------------------------------------------------

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` with the best available key, rotating on quota rejections."""
        tried: Set[str] = set()
        while True:
            key = self.rotator.select()
            if key is None:
                raise ConfigError("No Spoonacular API key configured (checked API_KEY, API_KEY_2, ...)")
            if key in tried:
                # The rotator came back to a key that was just rejected: every
                # key in the pool is out of quota.
                raise CredentialsExhaustedError()
            tried.add(key)

            query = {**(params or {}), "apiKey": key}
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(f"{self.base_url}{path}", params=query)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Recipe API request failed: {e}") from e

            try:
                data = response.json()
            except ValueError:
                data = None

            if response.status_code == QUOTA_STATUS or (isinstance(data, dict) and data.get("code") == QUOTA_STATUS):
                self.rotator.record_exhausted(key)
                logger.warning(f"Recipe API limit reached on key #{self.rotator.credentials.index(key) + 1}, rotating")
                continue

            if response.status_code >= 400:
                message = data.get("message") if isinstance(data, dict) else None
                raise UpstreamError(
                    f"Recipe API error {response.status_code}: {message or 'request failed'}",
                    status_code=response.status_code,
                )
            if data is None:
                raise UpstreamError("Recipe API returned a non-JSON body", status_code=response.status_code)

            self.rotator.record_use(key)
            return data

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def search_recipes(self, term: str, page: int = 1, number: int = 10, **filters: Any) -> Dict[str, Any]:
        """complexSearch, cached per term/page/filters for SEARCH_TTL."""
        if page < 1:
            raise ValueError("page must be >= 1")
        filters = {k: v for k, v in filters.items() if v is not None and v != ""}
        params: Dict[str, Any] = {
            "query": term,
            "number": number,
            "offset": (page - 1) * number,
            "addRecipeInformation": "true",
            "fillIngredients": "true",
            **{k: _param(v) for k, v in filters.items()},
        }
        key = cache_keys.recipe_search(term, page, {"number": number, **filters})
        return await self.cache.with_cache(
            key, lambda: self._request("/recipes/complexSearch", params), SEARCH_TTL
        )

    async def get_recipe_information(self, recipe_id: int) -> Dict[str, Any]:
        return await self.cache.with_cache(
            cache_keys.recipe(recipe_id),
            lambda: self._request(f"/recipes/{recipe_id}/information", {"includeNutrition": "false"}),
            RECIPE_TTL,
        )

    async def get_recipe_summary(self, recipe_id: int) -> Dict[str, Any]:
        return await self.cache.with_cache(
            cache_keys.recipe_summary(recipe_id),
            lambda: self._request(f"/recipes/{recipe_id}/summary"),
            RECIPE_TTL,
        )

    async def get_similar_recipes(self, recipe_id: int, number: int = 6) -> List[Dict[str, Any]]:
        return await self.cache.with_cache(
            cache_keys.recipe_similar(recipe_id),
            lambda: self._request(f"/recipes/{recipe_id}/similar", {"number": number}),
            RECIPE_TTL,
        )

    async def autocomplete(self, query: str, number: int = 10) -> List[Dict[str, Any]]:
        return await self.cache.with_cache(
            cache_keys.autocomplete(query),
            lambda: self._request("/recipes/autocomplete", {"query": query, "number": number}),
            SEARCH_TTL,
        )

    async def get_recipes_bulk(self, ids: Iterable[Any]) -> Dict[str, Any]:
        """informationBulk for a set of saved recipes, wrapped as ``{"results": [...]}``."""
        ids = [str(i).strip() for i in ids if str(i).strip()]
        if not ids:
            return {"results": []}

        async def fetch() -> Dict[str, Any]:
            data = await self._request("/recipes/informationBulk", {"ids": ",".join(ids)})
            return {"results": data}

        return await self.cache.with_cache(cache_keys.recipes_bulk(ids), fetch, RECIPE_TTL)

    async def get_wine_pairing(self, food: str, max_price: Optional[float] = None) -> Dict[str, Any]:
        """Wines that go with a dish, ingredient or cuisine."""
        if not food or not food.strip():
            raise ValueError("food must not be empty")
        params: Dict[str, Any] = {"food": food.strip()}
        if max_price is not None:
            params["maxPrice"] = max_price
        return await self.cache.with_cache(
            cache_keys.wine_pairing(food, max_price),
            lambda: self._request("/food/wine/pairing", params),
            RECIPE_TTL,
        )

    async def get_dish_pairing_for_wine(self, wine: str) -> Dict[str, Any]:
        """Dishes that go with a wine such as ``merlot`` or ``riesling``."""
        if not wine or not wine.strip():
            raise ValueError("wine must not be empty")
        return await self.cache.with_cache(
            cache_keys.wine_dishes(wine),
            lambda: self._request("/food/wine/dishes", {"wine": wine.strip()}),
            RECIPE_TTL,
        )

    # ------------------------------------------------------------------
    # Invalidation & diagnostics
    # ------------------------------------------------------------------

    async def invalidate_recipe(self, recipe_id: int) -> None:
        for key in (
            cache_keys.recipe(recipe_id),
            cache_keys.recipe_similar(recipe_id),
            cache_keys.recipe_summary(recipe_id),
            cache_keys.recipe_analysis(recipe_id),
        ):
            await self.cache.delete(key)
        await self.cache.invalidate(f"recipe:conversion:{recipe_id}:*")

    async def invalidate_search(self, term: str) -> int:
        """Drop every cached page of a search term."""
        return await self.cache.invalidate(cache_keys.recipe_search_pattern(term))

    def api_key_stats(self) -> List[Dict[str, Any]]:
        return self.rotator.stats()


def _param(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return value
