import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Main application settings loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    PROVIDERS_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a specific providers YAML file.")

    # --- Cache ---
    REDIS_URL: Optional[str] = Field(None, description="Redis URL. When unset an in-process store is used.")
    CACHE_MAX_ENTRIES: int = Field(4096, ge=1, description="Capacity of the in-process cache store.")

    # --- Recipe upstream (Spoonacular) ---
    SPOONACULAR_BASE_URL: str = Field("https://api.spoonacular.com")
    SPOONACULAR_KEY_PREFIX: str = Field("API_KEY", description="Credential pool prefix: API_KEY, API_KEY_2, ...")
    SPOONACULAR_DAILY_LIMIT: int = Field(50, ge=1, description="Daily call allowance of every pool member.")
    CREDENTIAL_DAILY_ROLLOVER: bool = Field(False, description="Reset a credential's counter when the UTC day changes.")
    HTTP_TIMEOUT_SECONDS: float = Field(10.0, gt=0)

    # --- Weather ---
    OPENWEATHER_API_KEY: Optional[str] = Field(None)
    OPENWEATHER_BASE_URL: str = Field("https://api.openweathermap.org/data/2.5")

    # --- Completion providers ---
    GROQ_API_KEY: Optional[str] = Field(None)
    OPENROUTER_API_KEY: Optional[str] = Field(None)
    GEMINI_API_KEY: Optional[str] = Field(None)
    OPENAI_API_KEY: Optional[str] = Field(None)
    ANTHROPIC_API_KEY: Optional[str] = Field(None)
    OLLAMA_HOST: Optional[str] = Field(None, description="Local Ollama server; the provider is skipped when unset.")

    # --- Fallback chain timing ---
    PROVIDER_TIMEOUT_SECONDS: float = Field(15.0, gt=0, description="Budget of a single provider attempt.")
    FALLBACK_TOTAL_TIMEOUT_SECONDS: float = Field(40.0, gt=0, description="Budget of a whole fallback chain.")

    def provider_key(self, name: str) -> Optional[str]:
        """API key configured for a provider name, if any."""
        return getattr(self, f"{name.upper()}_API_KEY", None)

# --- YAML-based Configuration Models ---

class ProviderSpec(BaseModel):
    name: str
    model: str
    temperature: float = Field(0.3, ge=0, le=2)
    max_tokens: int = Field(1024, ge=1)
    base_url: Optional[str] = None

class ProvidersConfig(BaseModel):
    chain: List[ProviderSpec]

# --- YAML helpers ---

def load_yaml(name: str) -> Dict[str, Any]:
    """Reads ``configs/<name>.yml`` relative to BASE_DIR."""
    config_path = BASE_DIR / 'configs' / f'{name}.yml'
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file '{name}.yml' not found in {config_path.parent}")
    with open(config_path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}

def load_config(name: str, model: Type[M]) -> M:
    """Loads a YAML file and validates it with the given Pydantic model."""
    return model.model_validate(load_yaml(name))

# --- Main Config Object ---

class Config:
    """
    A unified configuration object.
    """
    def __init__(self):
        try:
            self.app = AppSettings()
        except ValidationError as e:
            raise ConfigError(f"Configuration validation error: {e}") from e

        self.providers: ProvidersConfig = self._load_providers()

    def _load_providers(self) -> ProvidersConfig:
        path = self.app.PROVIDERS_CONFIG_PATH
        try:
            if path:
                with open(path, 'r', encoding='utf-8') as f:
                    return ProvidersConfig.model_validate(yaml.safe_load(f) or {})
            return load_config('providers', ProvidersConfig)
        except (OSError, ValidationError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not load provider chain: {e}") from e

# --- Global Config Instance ---
_settings_instance = None

def get_settings() -> Config:
    """
    Returns a singleton instance of the Config object.
    This function controls when the settings are loaded and validated,
    making the application more testable.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Config()
        logger.info(
            "Configuration loaded: %d providers in chain",
            len(_settings_instance.providers.chain),
        )
    return _settings_instance

def reset_settings() -> None:
    """Drops the cached Config so the next get_settings() reloads it."""
    global _settings_instance
    _settings_instance = None
