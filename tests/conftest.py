import sys
from pathlib import Path
from typing import List

import pytest

# Add project root to the path to allow imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from orchestration.cache import MemoryCacheStore, ResponseCache
from orchestration.providers import BaseProvider


class ScriptedProvider(BaseProvider):
    """Completion provider that replays canned replies in order."""

    def __init__(self, name: str, replies: List[str]):
        super().__init__(model=f"{name}-model", api_key="test-key", base_url="http://scripted")
        self.name = name
        self.replies = list(replies)
        self.prompts: List[tuple] = []

    async def complete(self, system_prompt, user_prompt):
        self.prompts.append((system_prompt, user_prompt))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def _build_request(self, system_prompt, user_prompt, key):  # pragma: no cover
        raise NotImplementedError

    def _parse_response(self, data):  # pragma: no cover
        raise NotImplementedError


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def scripted_provider():
    """Factory: ``scripted_provider("groq", '{"query": "x"}', ...)``."""
    def _make(name: str, *replies: str, configured: bool = True) -> ScriptedProvider:
        provider = ScriptedProvider(name, list(replies) or ["no reply"])
        if not configured:
            provider.api_key = None
        return provider
    return _make


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def memory_cache(fake_clock) -> ResponseCache:
    return ResponseCache(MemoryCacheStore(max_size=256, clock=fake_clock))
