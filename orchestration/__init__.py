"""Resilient external-request orchestration: caching, key rotation and
multi-provider fallback.

Request handlers compose these pieces.
"""

from .cache import (
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    ResponseCache,
    cache_keys,
    create_cache_store,
    make_key,
)
from .credentials import CredentialRotator, CredentialUsage
from .extraction import extract_json
from .fallback import AttemptOutcome, CompletionResult, FallbackOrchestrator
from .providers import BaseProvider, build_provider_chain, create_provider

__all__ = [
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "ResponseCache",
    "cache_keys",
    "create_cache_store",
    "make_key",
    "CredentialRotator",
    "CredentialUsage",
    "extract_json",
    "AttemptOutcome",
    "CompletionResult",
    "FallbackOrchestrator",
    "BaseProvider",
    "build_provider_chain",
    "create_provider",
]
