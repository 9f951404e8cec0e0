"""AI-assisted recipe features.

Every feature runs a StructuredOperation through the provider fallback chain
and caches the outcome. Answers from the rule-based fallback are cached only
for the short AI_TTL so a recovered provider gets another chance soon.
"""
from typing import Any, Dict, List, Optional

from core.logging import logger
from orchestration.cache import AI_TTL, ANALYSIS_TTL, SEARCH_TTL, ResponseCache, cache_keys
from orchestration.fallback import FallbackOrchestrator
from orchestration.operations import (
    ANALYZER,
    DIETARY_CONVERTER,
    RECOMMENDER,
    SEARCH_NORMALIZER,
    WEATHER_SUGGESTER,
    OperationResult,
    StructuredOperation,
    normalize_diet,
)
from services.recipe_service import RecipeService
from services.weather_service import WeatherService


class AssistantService:
    def __init__(
        self,
        cache: ResponseCache,
        orchestrator: FallbackOrchestrator,
        recipes: RecipeService,
        weather: Optional[WeatherService] = None,
    ):
        self.cache = cache
        self.orchestrator = orchestrator
        self.recipes = recipes
        self.weather = weather

    async def _cached_operation(
        self,
        key: str,
        operation: StructuredOperation,
        ttl: int,
        **inputs: Any,
    ) -> Dict[str, Any]:
        """Cache-aside around one operation.

        Cached shape: ``{"data": {...}, "ai_generated": bool, "provider": str|None}``.
        """
        async def produce() -> Dict[str, Any]:
            result: OperationResult = await operation.run(self.orchestrator, **inputs)
            return {
                "data": result.data.model_dump(mode="json"),
                "ai_generated": result.ai_generated,
                "provider": result.provider,
            }

        return await self.cache.with_cache(
            key, produce, lambda entry: ttl if entry["ai_generated"] else min(ttl, AI_TTL)
        )

    # ------------------------------------------------------------------

    async def normalize_query(self, query: str) -> Dict[str, Any]:
        if not query or not query.strip():
            raise ValueError("query must not be empty")
        return await self._cached_operation(
            cache_keys.ai_search(query), SEARCH_NORMALIZER, AI_TTL, query=query
        )

    async def smart_search(self, query: str, page: int = 1) -> Dict[str, Any]:
        """Natural-language search: AI extracts parameters, then a normal search runs."""
        normalized = await self.normalize_query(query)
        params = normalized["data"]
        filters = {
            "cuisine": params.get("cuisine"),
            "diet": params.get("diet"),
            "intolerances": params.get("intolerances"),
            "type": params.get("meal_type"),
            "includeIngredients": params.get("include_ingredients"),
            "excludeIngredients": params.get("exclude_ingredients"),
            "maxReadyTime": params.get("max_ready_time"),
        }
        results = await self.recipes.search_recipes(params["query"], page, **filters)
        return {
            **results,
            "ai_optimized": normalized["ai_generated"],
            "original_query": query,
            "search_params": {k: v for k, v in params.items() if v is not None},
        }

    async def recommend(
        self,
        ingredients: List[str],
        preferences: Optional[str] = None,
        diet: Optional[str] = None,
    ) -> Dict[str, Any]:
        ingredients = [i.strip() for i in ingredients if i and i.strip()]
        key = cache_keys.recommendations(
            {"ingredients": ingredients, "preferences": preferences, "diet": diet}
        )
        entry = await self._cached_operation(
            key, RECOMMENDER, AI_TTL,
            ingredients=ingredients, preferences=preferences, diet=diet,
        )
        queries = entry["data"]["queries"]
        # The first query is the best one; fetch recipes for it only.
        results = await self.recipes.search_recipes(queries[0], 1, diet=diet)
        return {
            "recipes": results.get("results", []),
            "reason": entry["data"].get("reason"),
            "context": ", ".join(ingredients) or preferences,
            "queries": queries,
            "ai_generated": entry["ai_generated"],
        }

    async def analyze_recipe(self, recipe_id: int) -> Dict[str, Any]:
        recipe = await self.recipes.get_recipe_information(recipe_id)
        return await self._cached_operation(
            cache_keys.recipe_analysis(recipe_id), ANALYZER, ANALYSIS_TTL, recipe=recipe
        )

    async def convert_recipe(self, recipe_id: int, diet: str) -> Dict[str, Any]:
        if not diet or not diet.strip():
            raise ValueError("diet must not be empty")
        diet = normalize_diet(diet)
        recipe = await self.recipes.get_recipe_information(recipe_id)
        return await self._cached_operation(
            cache_keys.recipe_conversion(recipe_id, diet), DIETARY_CONVERTER, ANALYSIS_TTL,
            recipe=recipe, diet=diet,
        )

    async def weather_suggestions(
        self,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        city: Optional[str] = None,
        units: str = "metric",
    ) -> Dict[str, Any]:
        if self.weather is None:
            raise RuntimeError("weather service not available")
        weather = await self.weather.get_weather(lat=lat, lon=lon, city=city, units=units)
        temperature_c = round(weather.temperature_c)
        key = cache_keys.weather_suggestions(
            {"location": weather.location, "t": temperature_c, "condition": weather.condition}
        )
        entry = await self._cached_operation(
            key, WEATHER_SUGGESTER, SEARCH_TTL,
            temperature_c=float(temperature_c),
            condition=weather.condition,
            description=weather.description,
            location=weather.location,
        )
        results = await self.recipes.search_recipes(entry["data"]["queries"][0], 1)
        logger.info(
            f"Weather suggestions for {weather.location or 'location'}: "
            f"{entry['data']['queries']} (ai={entry['ai_generated']})"
        )
        return {
            "weather": weather.model_dump(),
            "suggestions": results.get("results", []),
            "reasoning": entry["data"]["reasoning"],
            "queries": entry["data"]["queries"],
            "ai_generated": entry["ai_generated"],
        }
