"""Completion provider adapters.

Every adapter turns (system prompt, user prompt) into one HTTP call and
returns the model's text. Failures are raised as typed ProviderError
subclasses; adapters never retry, the fallback chain decides what happens
next.
"""
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

import core.env
from core.errors import (
    ConfigError,
    MalformedResponseError,
    ProviderError,
    ProviderHTTPError,
    ProviderTimeoutError,
    QuotaRejectedError,
)
from core.logging import logger
from orchestration.credentials import CredentialRotator

# Statuses an upstream uses to say "this key is out of quota / unpaid".
QUOTA_STATUSES = (402, 429)


class BaseProvider(ABC):
    """Base class for completion providers."""

    name = "base"
    default_base_url: Optional[str] = None
    requires_key = True

    def __init__(
        self,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        credentials: Optional[CredentialRotator] = None,
        timeout: float = 15.0,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url or "").rstrip("/")
        self.credentials = credentials
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        """False when the running environment holds no credential for this provider."""
        if not self.base_url:
            return False
        if not self.requires_key:
            return True
        return bool(self.api_key) or bool(self.credentials and len(self.credentials))

    def _select_key(self) -> Optional[str]:
        if self.credentials is not None and len(self.credentials):
            return self.credentials.select()
        return self.api_key

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Run one completion and return the raw text body."""
        if not self.is_configured:
            raise ConfigError(f"provider '{self.name}' is not configured")
        key = self._select_key()
        request = self._build_request(system_prompt, user_prompt, key)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    request["url"],
                    headers=request.get("headers", {}),
                    params=request.get("params"),
                    json=request["json"],
                )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.name, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"transport error: {e}") from e

        status = response.status_code
        if status in QUOTA_STATUSES:
            if key and self.credentials is not None:
                self.credentials.record_exhausted(key)
            raise QuotaRejectedError(self.name, status, "quota rejected")
        if status < 200 or status >= 300:
            raise ProviderHTTPError(self.name, status, _short(response))

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(self.name, "response body is not JSON") from e

        try:
            text = self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise MalformedResponseError(self.name, f"unexpected response shape: {e!r}") from e
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError(self.name, "empty completion text")

        if key and self.credentials is not None:
            self.credentials.record_use(key)
        return text

    @abstractmethod
    def _build_request(self, system_prompt: str, user_prompt: str, key: Optional[str]) -> Dict[str, Any]:
        """Return ``{"url", "headers", "json"[, "params"]}`` for this provider."""

    @abstractmethod
    def _parse_response(self, data: Dict[str, Any]) -> str:
        """Pull the completion text out of the decoded response body."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}:{self.model}>"


def _short(response: httpx.Response, limit: int = 200) -> str:
    return (response.text or "")[:limit]


class OpenAICompatibleProvider(BaseProvider):
    """Chat-completions wire shape shared by OpenAI, Groq and OpenRouter."""

    extra_headers: Dict[str, str] = {}

    def _build_request(self, system_prompt, user_prompt, key):
        return {
            "url": f"{self.base_url}/chat/completions",
            "headers": {
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
                **self.extra_headers,
            },
            "json": {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
        }

    def _parse_response(self, data):
        return data["choices"][0]["message"]["content"]


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI API provider."""
    name = "openai"
    default_base_url = "https://api.openai.com/v1"


class GroqProvider(OpenAICompatibleProvider):
    """Groq hosted models (OpenAI-compatible endpoint)."""
    name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter model marketplace (OpenAI-compatible endpoint)."""
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
    extra_headers = {"X-Title": "recipe-app"}


class AnthropicProvider(BaseProvider):
    """Anthropic messages API."""
    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def _build_request(self, system_prompt, user_prompt, key):
        return {
            "url": f"{self.base_url}/messages",
            "headers": {
                "x-api-key": key or "",
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            "json": {
                "model": self.model,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
        }

    def _parse_response(self, data):
        return "".join(block.get("text", "") for block in data["content"] if block.get("type", "text") == "text")


class GeminiProvider(BaseProvider):
    """Google Gemini generateContent API."""
    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _build_request(self, system_prompt, user_prompt, key):
        return {
            "url": f"{self.base_url}/models/{self.model}:generateContent",
            "headers": {"Content-Type": "application/json"},
            "params": {"key": key},
            "json": {
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
        }

    def _parse_response(self, data):
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)


class OllamaProvider(BaseProvider):
    """Ollama local model provider. Configured only when a host is given."""
    name = "ollama"
    requires_key = False

    def __init__(self, model: str, base_url: Optional[str] = None, **kwargs):
        kwargs.pop("api_key", None)
        super().__init__(model, base_url=base_url or core.env.OLLAMA_HOST, **kwargs)

    def _build_request(self, system_prompt, user_prompt, key):
        return {
            "url": f"{self.base_url}/api/generate",
            "json": {
                "model": self.model,
                "system": system_prompt,
                "prompt": user_prompt,
                "stream": False,
                "options": {
                    "temperature": self.temperature,
                    "num_predict": self.max_tokens,
                },
            },
        }

    def _parse_response(self, data):
        return data["response"]


# Provider factory
PROVIDERS = {
    "openai": OpenAIProvider,
    "groq": GroqProvider,
    "openrouter": OpenRouterProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
}


def create_provider(provider_type: str, **kwargs) -> BaseProvider:
    """Create a provider instance by type."""
    provider_class = PROVIDERS.get(provider_type.lower())
    if not provider_class:
        raise ValueError(f"Unknown provider type: {provider_type}")
    return provider_class(**kwargs)


def _env_key(name: str) -> Optional[str]:
    return getattr(core.env, f"{name.upper()}_API_KEY", None) or os.getenv(f"{name.upper()}_API_KEY")


def build_provider_chain(config) -> List[BaseProvider]:
    """Instantiate the ranked provider chain from a ``core.config.Config``.

    Providers without a key stay in the list; the orchestrator skips them.
    """
    app = config.app
    chain: List[BaseProvider] = []
    for entry in config.providers.chain:
        kwargs: Dict[str, Any] = {
            "model": entry.model,
            "temperature": entry.temperature,
            "max_tokens": entry.max_tokens,
            "timeout": app.PROVIDER_TIMEOUT_SECONDS,
        }
        if entry.name.lower() == "ollama":
            kwargs["base_url"] = entry.base_url or app.OLLAMA_HOST
        else:
            kwargs["api_key"] = app.provider_key(entry.name) or _env_key(entry.name)
            if entry.base_url:
                kwargs["base_url"] = entry.base_url
        provider = create_provider(entry.name, **kwargs)
        logger.debug(f"Provider {provider!r} configured={provider.is_configured}")
        chain.append(provider)
    return chain
