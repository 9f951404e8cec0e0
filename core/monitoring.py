"""Prometheus counters for the orchestration layer.

The counters live in the default registry so an exporter started by the host
application picks them up. Recording helpers never raise: metrics are not
allowed to break a request.
"""
import logging

import prometheus_client as prom

logger = logging.getLogger(__name__)

CACHE_REQUESTS = prom.Counter(
    'recipe_cache_requests_total', 'Cache lookups by outcome', ['result']
)
CACHE_WRITE_FAILURES = prom.Counter(
    'recipe_cache_write_failures_total', 'Cache writes that failed and were ignored'
)
PROVIDER_ATTEMPTS = prom.Counter(
    'recipe_provider_attempts_total', 'Completion provider attempts', ['provider', 'outcome']
)
FALLBACK_DEGRADED = prom.Counter(
    'recipe_fallback_degraded_total', 'Operations answered by the rule-based fallback', ['operation']
)
CREDENTIAL_RESETS = prom.Counter(
    'recipe_credential_resets_total', 'Global resets of a credential pool', ['pool']
)
CREDENTIAL_EXHAUSTED = prom.Counter(
    'recipe_credential_exhausted_total', 'Credentials marked exhausted by an upstream', ['pool']
)


def _safe_inc(counter, **labels) -> None:
    try:
        if labels:
            counter.labels(**labels).inc()
        else:
            counter.inc()
    except Exception as e:  # pragma: no cover
        logger.debug(f"metric update failed: {e}")


def record_cache(result: str) -> None:
    """result is one of hit, miss, error."""
    _safe_inc(CACHE_REQUESTS, result=result)

def record_cache_write_failure() -> None:
    _safe_inc(CACHE_WRITE_FAILURES)

def record_attempt(provider: str, outcome: str) -> None:
    _safe_inc(PROVIDER_ATTEMPTS, provider=provider, outcome=outcome)

def record_degraded(operation: str) -> None:
    _safe_inc(FALLBACK_DEGRADED, operation=operation)

def record_credential_reset(pool: str) -> None:
    _safe_inc(CREDENTIAL_RESETS, pool=pool)

def record_credential_exhausted(pool: str) -> None:
    _safe_inc(CREDENTIAL_EXHAUSTED, pool=pool)
