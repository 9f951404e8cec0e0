# -*- coding: utf-8 -*-
"""
Unified Environment Variable Loader.

This module loads environment variables from a .env file and provides them as
Python constants. It includes a fallback mechanism for aliased variables and
discovery of numbered credential pools (``API_KEY``, ``API_KEY_2``, ...).

Example:
    import core.env
    print(core.env.OLLAMA_HOST)
    keys = core.env.discover_credentials('API_KEY')
"""
import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file located in the project root
# The search path starts from the current working directory and goes up.
load_dotenv()

def _first(*keys: str, default: str | None = None) -> str | None:
    """
    Return the value of the first environment variable that is set and not empty.

    Args:
        *keys: A sequence of environment variable names to check.
        default: The default value to return if no variable is found.

    Returns:
        The value of the first found environment variable, or the default value.
    """
    for key in keys:
        val = os.getenv(key)
        if val:
            return val
    return default

def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1].strip()
    return value

def discover_credentials(prefix: str) -> List[str]:
    """
    Collect a numbered pool of secrets from the environment.

    ``PREFIX`` comes first, then ``PREFIX_2``, ``PREFIX_3`` and so on until the
    first index that is not set. Surrounding quotes are stripped, empty values
    skipped and duplicates dropped, keeping the first position.
    """
    names = [prefix]
    index = 2
    while os.getenv(f"{prefix}_{index}") is not None:
        names.append(f"{prefix}_{index}")
        index += 1

    keys: List[str] = []
    for name in names:
        raw = os.getenv(name)
        if not raw:
            continue
        key = _unquote(raw)
        if key and key not in keys:
            keys.append(key)
    return keys

# --- General & Core ---
LOG_LEVEL: str = _first('LOG_LEVEL', default='INFO')
REDIS_URL: str | None = _first('REDIS_URL', 'UPSTASH_REDIS_URL')

# --- Recipe upstream (Spoonacular) ---
SPOONACULAR_KEY_PREFIX: str = _first('SPOONACULAR_KEY_PREFIX', default='API_KEY')

# --- Weather ---
OPENWEATHER_API_KEY: str | None = _first('OPENWEATHER_API_KEY', 'WEATHER_API_KEY')

# --- Completion providers ---
GROQ_API_KEY: str | None = _first('GROQ_API_KEY')
OPENROUTER_API_KEY: str | None = _first('OPENROUTER_API_KEY')
GEMINI_API_KEY: str | None = _first('GEMINI_API_KEY', 'GOOGLE_API_KEY')
OPENAI_API_KEY: str | None = _first('OPENAI_API_KEY')
ANTHROPIC_API_KEY: str | None = _first('ANTHROPIC_API_KEY')
OLLAMA_HOST: str | None = _first('OLLAMA_HOST', 'OLLAMA_API_URL')
