"""Wires the orchestration pieces into the services request handlers use."""
from dataclasses import dataclass
from typing import Optional

from core.config import Config, get_settings
from core.logging import logger
from orchestration.cache import ResponseCache, create_cache_store
from orchestration.fallback import FallbackOrchestrator
from services.assistant_service import AssistantService
from services.recipe_service import RecipeService
from services.weather_service import WeatherService


@dataclass
class Services:
    cache: ResponseCache
    orchestrator: FallbackOrchestrator
    recipes: RecipeService
    weather: WeatherService
    assistant: AssistantService


def build_services(config: Optional[Config] = None) -> Services:
    config = config or get_settings()
    cache = ResponseCache(create_cache_store(config.app))
    orchestrator = FallbackOrchestrator.from_config(config)
    recipes = RecipeService.from_config(config, cache)
    weather = WeatherService.from_config(config, cache)
    assistant = AssistantService(cache, orchestrator, recipes, weather)
    logger.info(
        f"Services ready: {len(orchestrator.configured())}/{len(orchestrator.providers)} "
        f"completion providers configured"
    )
    return Services(cache, orchestrator, recipes, weather, assistant)


# --- Singleton Pattern ---
_services_instance: Optional[Services] = None

def get_services() -> Services:
    """Returns the process-wide Services instance."""
    global _services_instance
    if _services_instance is None:
        _services_instance = build_services()
    return _services_instance
