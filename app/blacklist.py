"""
Token blacklist — revocation of bearer tokens before their natural expiry.

Logout adds the presented token here; request authentication refuses any
token found here. Entries are keyed by the SHA-256 digest of the raw token,
so the blacklist never holds a usable credential, and carry the token's own
expiry so they can be dropped once the token would be rejected anyway.

Concurrency:
  State is guarded by a reader/writer lock. is_blacklisted() takes the read
  side, so concurrent lookups don't serialize; add() and purge_expired()
  take the write side.

Sweep:
  start() launches a daemon thread that purges expired entries every
  `sweep_interval` seconds (5 minutes by default) until stop() is called.
  An expired entry that has not been swept yet is harmless: the token it
  names already fails the expiry check.

This state is process-local. Several replicas behind a load balancer each
have their own blacklist; see DESIGN.md.
"""

import hashlib
import logging
import threading
from datetime import datetime, timezone

logger = logging.getLogger("openvpn_mng.blacklist")

DEFAULT_SWEEP_INTERVAL = 5 * 60


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True

    def release_write(self) -> None:
        with self._cond:
            self._writing = False
            self._cond.notify_all()


def token_digest(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class TokenBlacklist:
    def __init__(self, sweep_interval: float = DEFAULT_SWEEP_INTERVAL):
        self._entries: dict[str, datetime] = {}
        self._lock = ReadWriteLock()
        self._sweep_interval = sweep_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def add(self, raw_token: str, expires_at: datetime) -> None:
        """Blacklist a token until expires_at."""
        digest = token_digest(raw_token)
        self._lock.acquire_write()
        try:
            self._entries[digest] = expires_at
        finally:
            self._lock.release_write()

    def is_blacklisted(self, raw_token: str) -> bool:
        digest = token_digest(raw_token)
        self._lock.acquire_read()
        try:
            return digest in self._entries
        finally:
            self._lock.release_read()

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop entries whose expiry has passed. Returns how many were removed."""
        now = now or datetime.now(timezone.utc)
        self._lock.acquire_write()
        try:
            expired = [d for d, exp in self._entries.items() if exp < now]
            for digest in expired:
                del self._entries[digest]
        finally:
            self._lock.release_write()
        if expired:
            logger.debug("Purged %d expired blacklist entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._entries)
        finally:
            self._lock.release_read()

    # --- background sweep ---

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, name="token-blacklist-sweep", daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _sweep_loop(self) -> None:
        # Event.wait returns True once stop() is called, ending the loop
        while not self._stop_event.wait(self._sweep_interval):
            self.purge_expired()
