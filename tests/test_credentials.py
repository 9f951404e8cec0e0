"""Tests for the quota-aware credential rotator."""
import threading
from datetime import datetime, timezone

import pytest

from orchestration.credentials import CredentialRotator


@pytest.fixture
def rotator():
    return CredentialRotator(["keyA", "keyB"], daily_limit=2)


class TestSelection:
    def test_empty_pool_returns_none(self):
        assert CredentialRotator([]).select() is None

    def test_priority_order_with_reset(self, rotator):
        """keyA, keyA, keyB, keyB, then a global reset hands out keyA again."""
        picked = []
        for _ in range(4):
            key = rotator.select()
            picked.append(key)
            rotator.record_use(key)

        assert picked == ["keyA", "keyA", "keyB", "keyB"]
        assert rotator.select() == "keyA"
        assert all(s["used"] == 0 for s in rotator.stats())

    @pytest.mark.parametrize("pool_size,limit", [(1, 1), (3, 2), (4, 5)])
    def test_reset_after_exactly_n_times_l_uses(self, pool_size, limit):
        keys = [f"k{i}" for i in range(pool_size)]
        rotator = CredentialRotator(keys, daily_limit=limit)

        for _ in range(pool_size * limit):
            key = rotator.select()
            rotator.record_use(key)
            assert sum(s["used"] for s in rotator.stats()) <= pool_size * limit

        assert [s["remaining"] for s in rotator.stats()] == [0] * pool_size
        assert rotator.select() == "k0"
        assert [s["used"] for s in rotator.stats()] == [0] * pool_size

    def test_duplicates_and_blanks_dropped(self):
        rotator = CredentialRotator(["a", "", "b", "a"])
        assert rotator.credentials == ["a", "b"]


class TestExhaustion:
    def test_exhausted_key_skipped_even_if_unused(self, rotator):
        rotator.record_exhausted("keyA")
        for _ in range(2):
            key = rotator.select()
            assert key == "keyB"
            rotator.record_use(key)

    def test_exhausted_key_returns_after_reset(self, rotator):
        rotator.record_exhausted("keyA")
        rotator.record_exhausted("keyB")
        assert rotator.select() == "keyA"
        assert rotator.select() == "keyA"

    def test_exhaustion_sets_used_to_limit(self, rotator):
        rotator.record_exhausted("keyB")
        usage = rotator.usage("keyB")
        assert usage.used == usage.limit == 2
        assert usage.last_used > 0

    def test_raising_limit_revives_exhausted_key(self, rotator):
        rotator.record_exhausted("keyA")
        assert rotator.select() == "keyB"
        rotator.set_limit(5)
        assert rotator.select() == "keyA"

    def test_unknown_keys_ignored(self, rotator):
        rotator.record_use("stranger")
        rotator.record_exhausted("stranger")
        assert rotator.usage("stranger") is None
        assert rotator.select() == "keyA"


class TestStats:
    def test_stats_hide_secrets(self, rotator):
        rotator.record_use("keyA")
        stats = rotator.stats()
        assert stats[0] == {"index": 1, "used": 1, "limit": 2, "remaining": 1, "last_used": stats[0]["last_used"]}
        assert "keyA" not in repr(stats)

    def test_manual_reset(self, rotator):
        rotator.record_use("keyA")
        rotator.record_exhausted("keyB")
        rotator.reset()
        assert [s["used"] for s in rotator.stats()] == [0, 0]

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            CredentialRotator(["a"], daily_limit=0)


class TestRollover:
    @pytest.fixture
    def day1(self, fake_clock):
        fake_clock.now = datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc).timestamp()
        return fake_clock.now

    def test_counters_reset_on_new_utc_day(self, day1, fake_clock):
        rotator = CredentialRotator(["keyA", "keyB"], daily_limit=1, clock=fake_clock, rollover=True)

        rotator.record_use(rotator.select())
        assert rotator.select() == "keyB"

        fake_clock.now = day1 + 2 * 3600  # next day
        assert rotator.select() == "keyA"

    def test_no_rollover_by_default(self, day1, fake_clock):
        rotator = CredentialRotator(["keyA", "keyB"], daily_limit=1, clock=fake_clock)

        rotator.record_use(rotator.select())
        fake_clock.now = day1 + 2 * 3600
        assert rotator.select() == "keyB"


class TestFromEnv:
    def test_discovers_numbered_keys(self, monkeypatch):
        monkeypatch.setenv("TEST_POOL", '"first"')
        monkeypatch.setenv("TEST_POOL_2", "second")
        monkeypatch.setenv("TEST_POOL_3", "'third'")
        monkeypatch.setenv("TEST_POOL_5", "unreachable")

        rotator = CredentialRotator.from_env("TEST_POOL", daily_limit=3)

        assert rotator.credentials == ["first", "second", "third"]
        assert rotator.limit == 3


class TestConcurrency:
    def test_concurrent_increments_do_not_corrupt(self):
        rotator = CredentialRotator(["a"], daily_limit=10 ** 6)

        def worker():
            for _ in range(1000):
                rotator.record_use("a")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert rotator.usage("a").used == 8000
