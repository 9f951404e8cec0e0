"""Tests for the AI-assisted features composed in AssistantService."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import NoProvidersConfiguredError
from orchestration.cache import AI_TTL
from orchestration.fallback import FallbackOrchestrator
from services.assistant_service import AssistantService
from services.weather_service import WeatherData

RECIPE = {
    "id": 11,
    "title": "Creamy Chicken Pasta",
    "healthScore": 35,
    "extendedIngredients": [{"original": "1 chicken breast"}, {"original": "100ml cream"}],
    "analyzedInstructions": [{"steps": [{"step": "Cook the chicken."}, {"step": "Stir in the cream."}]}],
}


@pytest.fixture
def recipes():
    recipes = MagicMock()
    recipes.search_recipes = AsyncMock(return_value={"results": [{"id": 1}], "totalResults": 1})
    recipes.get_recipe_information = AsyncMock(return_value=RECIPE)
    return recipes


@pytest.fixture
def weather():
    weather = MagicMock()
    weather.get_weather = AsyncMock(return_value=WeatherData(
        temperature=31.0, condition="Clear", description="clear sky", location="Seville",
    ))
    return weather


def build(memory_cache, recipes, weather, *providers):
    return AssistantService(memory_cache, FallbackOrchestrator(list(providers)), recipes, weather)


class TestSmartSearch:
    @pytest.mark.asyncio
    async def test_ai_parameters_drive_search(self, memory_cache, recipes, weather, scripted_provider):
        provider = scripted_provider(
            "groq", '{"query": "chicken curry", "cuisine": "indian", "maxReadyTime": 30, "diet": null}'
        )
        assistant = build(memory_cache, recipes, weather, provider)

        result = await assistant.smart_search("a quick indian chicken curry please")

        args, kwargs = recipes.search_recipes.call_args
        assert args == ("chicken curry", 1)
        assert kwargs["cuisine"] == "indian"
        assert kwargs["maxReadyTime"] == 30
        assert result["ai_optimized"] is True
        assert result["original_query"] == "a quick indian chicken curry please"
        assert result["search_params"] == {"query": "chicken curry", "cuisine": "indian", "max_ready_time": 30}
        assert result["results"] == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_degrades_to_plain_search(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "sorry, no idea"))

        result = await assistant.smart_search("  pad   thai ")

        assert result["ai_optimized"] is False
        assert result["search_params"] == {"query": "pad thai"}
        assert recipes.search_recipes.call_args.args == ("pad thai", 1)

    @pytest.mark.asyncio
    async def test_normalized_query_is_cached(self, memory_cache, recipes, weather, scripted_provider):
        provider = scripted_provider("groq", '{"query": "ramen"}')
        assistant = build(memory_cache, recipes, weather, provider)

        await assistant.smart_search("Ramen")
        await assistant.smart_search("  ramen")

        assert len(provider.prompts) == 1

    @pytest.mark.asyncio
    async def test_empty_query(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "{}"))
        with pytest.raises(ValueError):
            await assistant.smart_search("   ")

    @pytest.mark.asyncio
    async def test_no_configured_provider(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "{}", configured=False))
        with pytest.raises(NoProvidersConfiguredError):
            await assistant.smart_search("soup")


class TestRecommend:
    @pytest.mark.asyncio
    async def test_first_query_is_searched(self, memory_cache, recipes, weather, scripted_provider):
        provider = scripted_provider(
            "groq", '{"queries": ["chicken fried rice", "chicken stir fry"], "reason": "uses both"}'
        )
        assistant = build(memory_cache, recipes, weather, provider)

        result = await assistant.recommend(["chicken", " rice ", ""], diet="gluten free")

        recipes.search_recipes.assert_awaited_once_with("chicken fried rice", 1, diet="gluten free")
        assert result["queries"] == ["chicken fried rice", "chicken stir fry"]
        assert result["reason"] == "uses both"
        assert result["context"] == "chicken, rice"
        assert result["ai_generated"] is True


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_degraded_analysis_uses_short_ttl(self, memory_cache, fake_clock, recipes, weather, scripted_provider):
        provider = scripted_provider("groq", "not json")
        assistant = build(memory_cache, recipes, weather, provider)

        first = await assistant.analyze_recipe(11)
        assert first["ai_generated"] is False
        assert first["data"]["health_score"]["score"] == 35
        assert {a["allergen"] for a in first["data"]["allergens"]} == {"dairy"}

        await assistant.analyze_recipe(11)
        assert len(provider.prompts) == 1

        fake_clock.advance(AI_TTL + 1)
        provider.replies = ['{"healthScore": {"score": 60}}']
        again = await assistant.analyze_recipe(11)
        assert again["ai_generated"] is True
        assert again["provider"] == "groq"
        assert again["data"]["health_score"]["score"] == 60

    @pytest.mark.asyncio
    async def test_ai_analysis_kept_for_long_ttl(self, memory_cache, fake_clock, recipes, weather, scripted_provider):
        provider = scripted_provider("groq", '{"healthScore": {"score": 60}}')
        assistant = build(memory_cache, recipes, weather, provider)

        await assistant.analyze_recipe(11)
        fake_clock.advance(AI_TTL + 1)
        await assistant.analyze_recipe(11)

        assert len(provider.prompts) == 1

    @pytest.mark.asyncio
    async def test_convert_recipe(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "no"))

        result = await assistant.convert_recipe(11, "Vegan")

        swaps = {s["original"]: s["substitute"] for s in result["data"]["modified_ingredients"]}
        assert swaps == {"1 chicken breast": "chickpeas", "100ml cream": "coconut cream"}
        assert result["ai_generated"] is False

    @pytest.mark.asyncio
    async def test_convert_requires_diet(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "{}"))
        with pytest.raises(ValueError):
            await assistant.convert_recipe(11, " ")


class TestWeatherSuggestions:
    @pytest.mark.asyncio
    async def test_hot_weather_fallback(self, memory_cache, recipes, weather, scripted_provider):
        assistant = build(memory_cache, recipes, weather, scripted_provider("groq", "hmm"))

        result = await assistant.weather_suggestions(city="Seville")

        weather.get_weather.assert_awaited_once_with(lat=None, lon=None, city="Seville", units="metric")
        recipes.search_recipes.assert_awaited_once_with("salad", 1)
        assert result["weather"]["location"] == "Seville"
        assert result["suggestions"] == [{"id": 1}]
        assert result["ai_generated"] is False

    @pytest.mark.asyncio
    async def test_ai_suggestion(self, memory_cache, recipes, weather, scripted_provider):
        provider = scripted_provider("groq", '{"queries": ["gazpacho"], "reasoning": "too hot to cook"}')
        assistant = build(memory_cache, recipes, weather, provider)

        result = await assistant.weather_suggestions(lat=37.4, lon=-6.0)

        assert result["queries"] == ["gazpacho"]
        assert result["reasoning"] == "too hot to cook"
        assert "31" in provider.prompts[0][1]

    @pytest.mark.asyncio
    async def test_without_weather_service(self, memory_cache, recipes, scripted_provider):
        assistant = build(memory_cache, recipes, None, scripted_provider("groq", "{}"))
        with pytest.raises(RuntimeError):
            await assistant.weather_suggestions(city="Seville")
