from typing import Optional


class RecipeOrchestrationError(Exception):
    """Base exception class for the recipe orchestration layer."""
    pass

class ConfigError(RecipeOrchestrationError):
    """Raised when there is an error in a configuration file or setting."""
    pass

class EnvError(RecipeOrchestrationError):
    """Raised when a required environment variable is missing."""
    pass

class ExternalToolError(RecipeOrchestrationError):
    """Raised when an external tool or service fails."""
    pass

class NoProvidersConfiguredError(ConfigError):
    """Raised when a fallback chain has no configured provider at all."""
    pass

class ExtractionError(RecipeOrchestrationError):
    """Raised when no structured payload can be located in a response body."""
    pass


class ProviderError(ExternalToolError):
    """A single provider attempt failed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")

class ProviderTimeoutError(ProviderError):
    """The provider did not answer within its time budget."""
    pass

class ProviderHTTPError(ProviderError):
    """The provider answered with a non-success status."""

    def __init__(self, provider: str, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(provider, f"HTTP {status_code} {message}".strip())

class QuotaRejectedError(ProviderHTTPError):
    """The provider rejected the call because a quota or billing limit was hit."""
    pass

class MalformedResponseError(ProviderError):
    """The provider answered 2xx but the transport body had an unexpected shape."""
    pass


class UpstreamError(ExternalToolError):
    """A deterministic upstream lookup failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

class CredentialsExhaustedError(UpstreamError):
    """Every credential in a pool was rejected with a quota response."""

    def __init__(self, message: str = "All API keys have reached their daily limit"):
        super().__init__(message, status_code=402)
