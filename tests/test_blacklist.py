"""
Tests for the token blacklist.

These tests verify:
  - A blacklisted token is reported as such; other tokens are not
  - Entries are keyed by digest, never by the raw token
  - purge_expired drops only entries past their expiry
  - The sweep thread starts and stops cleanly
  - Concurrent adds and lookups don't lose entries
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from app.blacklist import TokenBlacklist, token_digest


def _future(seconds=3600):
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


class TestMembership:

    def test_added_token_is_blacklisted(self):
        blacklist = TokenBlacklist()
        blacklist.add("token-a", _future())
        assert blacklist.is_blacklisted("token-a")

    def test_other_tokens_are_independent(self):
        blacklist = TokenBlacklist()
        blacklist.add("token-a", _future())
        assert not blacklist.is_blacklisted("token-b")

    def test_raw_token_is_not_stored(self):
        blacklist = TokenBlacklist()
        blacklist.add("token-a", _future())
        assert "token-a" not in blacklist._entries
        assert token_digest("token-a") in blacklist._entries
        assert len(token_digest("token-a")) == 64


class TestPurge:

    def test_purge_removes_only_expired(self):
        blacklist = TokenBlacklist()
        blacklist.add("expired", _future(-10))
        blacklist.add("live", _future())

        assert blacklist.purge_expired() == 1
        assert not blacklist.is_blacklisted("expired")
        assert blacklist.is_blacklisted("live")
        assert len(blacklist) == 1

    def test_purge_with_explicit_clock(self):
        blacklist = TokenBlacklist()
        blacklist.add("token", _future(60))
        assert blacklist.purge_expired(now=_future(120)) == 1
        assert len(blacklist) == 0

    def test_sweep_thread_purges_and_stops(self):
        blacklist = TokenBlacklist(sweep_interval=0.01)
        blacklist.add("expired", _future(-10))
        blacklist.start()
        try:
            deadline = datetime.now(timezone.utc) + timedelta(seconds=2)
            while len(blacklist) and datetime.now(timezone.utc) < deadline:
                pass
        finally:
            blacklist.stop()
        assert len(blacklist) == 0
        assert blacklist._thread is None


class TestConcurrency:

    def test_concurrent_adds_and_lookups(self):
        blacklist = TokenBlacklist()
        tokens = [f"token-{i}" for i in range(500)]

        def add(token):
            blacklist.add(token, _future())
            return blacklist.is_blacklisted(token)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(add, tokens))

        assert all(results)
        assert len(blacklist) == len(tokens)
