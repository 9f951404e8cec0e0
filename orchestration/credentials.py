"""Quota-aware rotation over a pool of interchangeable API keys.

Keys are tried in discovery order. A key stays in rotation while its counted
usage is below the daily limit; an upstream quota rejection pins it to the
limit at once. When every key is at its limit the whole pool is reset and the
first key is handed out again: availability wins over strict quota adherence
because the upstream quota window usually rolls over on its own.

Usage is tracked in process memory only. A restart forgets it and several
processes do not share it.
"""

import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from core import monitoring
from core.env import discover_credentials
from core.logging import logger

__all__ = ["CredentialUsage", "CredentialRotator"]

DEFAULT_DAILY_LIMIT = 50


def _utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass
class CredentialUsage:
    key: str
    used: int = 0
    limit: int = DEFAULT_DAILY_LIMIT
    last_used: float = 0.0
    epoch: Optional[str] = None


class CredentialRotator:
    """Select the first credential that still has quota left."""

    def __init__(
        self,
        credentials: Sequence[str],
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        name: str = "default",
        clock: Callable[[], float] = time.time,
        rollover: bool = False,
    ) -> None:
        if daily_limit < 1:
            raise ValueError("daily_limit must be positive")
        # dict.fromkeys keeps first-seen order and drops duplicates
        self._pool: List[str] = list(dict.fromkeys(c for c in credentials if c))
        self._limit = daily_limit
        self.name = name
        self._clock = clock
        self._rollover = rollover
        self._usage: Dict[str, CredentialUsage] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, prefix: str, daily_limit: int = DEFAULT_DAILY_LIMIT, **kwargs) -> "CredentialRotator":
        keys = discover_credentials(prefix)
        logger.info(f"Discovered {len(keys)} credential(s) for {prefix}")
        return cls(keys, daily_limit=daily_limit, name=kwargs.pop("name", prefix.lower()), **kwargs)

    # ------------------------------------------------------------------
    @property
    def credentials(self) -> List[str]:
        return list(self._pool)

    @property
    def limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        return len(self._pool)

    def __contains__(self, key: str) -> bool:
        return key in self._pool

    def _record(self, key: str) -> CredentialUsage:
        # Caller holds the lock.
        usage = self._usage.get(key)
        if usage is None:
            usage = CredentialUsage(key=key, limit=self._limit)
            self._usage[key] = usage
        if self._rollover:
            today = _utc_day(self._clock())
            if usage.epoch != today:
                if usage.epoch is not None and usage.used:
                    logger.info(f"[{self.name}] quota window rolled over for key #{self._pool.index(key) + 1}")
                usage.used = 0
                usage.epoch = today
        return usage

    # ------------------------------------------------------------------
    def select(self) -> Optional[str]:
        """Return the best available credential, or None for an empty pool."""
        if not self._pool:
            return None
        with self._lock:
            for key in self._pool:
                usage = self._record(key)
                if usage.used < usage.limit:
                    return key

            logger.warning(f"[{self.name}] all {len(self._pool)} keys at limit - resetting usage")
            for key in self._pool:
                self._record(key).used = 0
        monitoring.record_credential_reset(self.name)
        return self._pool[0]

    def record_use(self, key: str) -> None:
        """Count one successful upstream call against ``key``."""
        if key not in self._pool:
            logger.debug(f"[{self.name}] ignoring usage for unknown key")
            return
        with self._lock:
            usage = self._record(key)
            usage.used += 1
            usage.last_used = self._clock()
            used, limit = usage.used, usage.limit
        logger.debug(f"[{self.name}] key usage: {used}/{limit}")

    def record_exhausted(self, key: str) -> None:
        """Take ``key`` out of rotation after an upstream quota rejection."""
        if key not in self._pool:
            logger.debug(f"[{self.name}] ignoring exhaustion for unknown key")
            return
        with self._lock:
            usage = self._record(key)
            usage.used = usage.limit
            usage.last_used = self._clock()
            index = self._pool.index(key) + 1
        logger.warning(f"[{self.name}] key #{index} reached its limit", extra={"pool": self.name})
        monitoring.record_credential_exhausted(self.name)

    def set_limit(self, daily_limit: int) -> None:
        """Change the limit for every key.

        Exhaustion is stored as ``used == limit``, so raising the limit puts
        previously exhausted keys back into rotation.
        """
        if daily_limit < 1:
            raise ValueError("daily_limit must be positive")
        with self._lock:
            self._limit = daily_limit
            for usage in self._usage.values():
                usage.limit = daily_limit

    def reset(self) -> None:
        with self._lock:
            for usage in self._usage.values():
                usage.used = 0
        logger.info(f"[{self.name}] usage reset")

    def usage(self, key: str) -> Optional[CredentialUsage]:
        if key not in self._pool:
            return None
        with self._lock:
            return CredentialUsage(**asdict(self._record(key)))

    def stats(self) -> List[Dict[str, float]]:
        """Per-key usage, keyed by 1-based pool position (secrets are not exposed)."""
        with self._lock:
            out = []
            for index, key in enumerate(self._pool, start=1):
                usage = self._record(key)
                out.append({
                    "index": index,
                    "used": usage.used,
                    "limit": usage.limit,
                    "remaining": max(0, usage.limit - usage.used),
                    "last_used": usage.last_used,
                })
            return out
