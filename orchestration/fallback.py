"""Sequential multi-provider fallback with JSON extraction.

Providers are tried strictly in their configured order, one at a time: a
later provider is only charged once every earlier one failed, timed out,
returned text without a usable payload, or is not configured. When the whole
chain fails the caller's rule-based fallback answers instead, so the feature
degrades rather than erroring. The only hard failure is a chain with no
configured provider at all.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from pydantic import ValidationError

from core import monitoring
from core.errors import ExtractionError, NoProvidersConfiguredError, ProviderError
from core.logging import logger

from .extraction import extract_json
from .providers import BaseProvider

__all__ = ["AttemptOutcome", "CompletionResult", "FallbackOrchestrator"]


@dataclass
class AttemptOutcome:
    """One provider attempt. Not persisted."""
    provider: str
    raw: Optional[str] = None
    error: Optional[str] = None
    payload: Any = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CompletionResult:
    payload: Any
    provider: Optional[str]
    ai_generated: bool
    attempts: List[AttemptOutcome] = field(default_factory=list)


class FallbackOrchestrator:
    """Try a ranked list of providers until one yields a usable payload."""

    def __init__(
        self,
        providers: Sequence[BaseProvider],
        attempt_timeout: float = 15.0,
        total_timeout: float = 40.0,
        name: str = "completion",
    ) -> None:
        self.providers = list(providers)
        self.attempt_timeout = attempt_timeout
        self.total_timeout = total_timeout
        self.name = name

    @classmethod
    def from_config(cls, config, providers: Optional[Sequence[BaseProvider]] = None, **kwargs) -> "FallbackOrchestrator":
        from .providers import build_provider_chain

        return cls(
            providers if providers is not None else build_provider_chain(config),
            attempt_timeout=config.app.PROVIDER_TIMEOUT_SECONDS,
            total_timeout=config.app.FALLBACK_TOTAL_TIMEOUT_SECONDS,
            **kwargs,
        )

    def configured(self) -> List[BaseProvider]:
        return [p for p in self.providers if p.is_configured]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        fallback: Callable[[], Any],
        expect: Optional[type] = dict,
        validate: Optional[Callable[[Any], Any]] = None,
        operation: Optional[str] = None,
    ) -> CompletionResult:
        """Return the first provider payload that extracts (and validates).

        ``validate`` may transform the payload; raising ValueError (pydantic's
        ValidationError included) rejects it. ``fallback`` builds the
        deterministic payload used when every provider fails.
        """
        operation = operation or self.name
        active = self.configured()
        if not active:
            raise NoProvidersConfiguredError(
                f"no completion provider configured for '{operation}'"
            )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.total_timeout
        attempts: List[AttemptOutcome] = []

        for provider in active:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"[{operation}] time budget spent before trying {provider.name}")
                break

            outcome = await self._attempt(
                provider, system_prompt, user_prompt,
                min(self.attempt_timeout, remaining), expect, validate, operation,
            )
            attempts.append(outcome)
            if outcome.ok:
                logger.info(f"[{operation}] answered by {provider.name} after {len(attempts)} attempt(s)")
                return CompletionResult(
                    payload=outcome.payload,
                    provider=provider.name,
                    ai_generated=True,
                    attempts=attempts,
                )

        logger.warning(
            f"[{operation}] all providers failed "
            f"({', '.join(f'{a.provider}: {a.error}' for a in attempts) or 'none attempted'}); "
            "using rule-based fallback"
        )
        monitoring.record_degraded(operation)
        return CompletionResult(
            payload=fallback(),
            provider=None,
            ai_generated=False,
            attempts=attempts,
        )

    async def _attempt(
        self,
        provider: BaseProvider,
        system_prompt: str,
        user_prompt: str,
        timeout: float,
        expect: Optional[type],
        validate: Optional[Callable[[Any], Any]],
        operation: str,
    ) -> AttemptOutcome:
        outcome = AttemptOutcome(provider=provider.name)
        started = time.monotonic()
        try:
            outcome.raw = await asyncio.wait_for(
                provider.complete(system_prompt, user_prompt), timeout=timeout
            )
        except asyncio.TimeoutError:
            outcome.error = f"timeout after {timeout:.1f}s"
            return self._failed(outcome, started, operation, "timeout")
        except ProviderError as e:
            outcome.error = str(e)
            return self._failed(outcome, started, operation, "transport")

        try:
            payload = extract_json(outcome.raw, expect=expect)
            if validate is not None:
                payload = validate(payload)
        except ExtractionError as e:
            outcome.error = f"extraction failed: {e}"
            return self._failed(outcome, started, operation, "unparseable")
        except (ValidationError, ValueError) as e:
            outcome.error = f"payload rejected: {e}"
            return self._failed(outcome, started, operation, "invalid")

        outcome.payload = payload
        outcome.elapsed = time.monotonic() - started
        monitoring.record_attempt(provider.name, "success")
        return outcome

    def _failed(self, outcome: AttemptOutcome, started: float, operation: str, kind: str) -> AttemptOutcome:
        outcome.elapsed = time.monotonic() - started
        logger.warning(
            f"[{operation}] provider {outcome.provider} failed ({kind}): {outcome.error}",
            extra={"operation": operation, "provider": outcome.provider, "kind": kind},
        )
        monitoring.record_attempt(outcome.provider, kind)
        return outcome
