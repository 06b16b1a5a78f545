"""In-memory user profile cache.

A profile is stored once and indexed under every identifier it carries
(accountId, displayName, emailAddress). Keys are case-insensitive. Expiry
is lazy, and LRU eviction removes a whole user, never a single alias.

All methods are synchronous, so under asyncio a multi-key ``set`` is
atomic with respect to other tasks.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)

IDENTIFIER_FIELDS = ("accountId", "displayName", "emailAddress")
PROFILE_FIELDS = (
    "accountId", "displayName", "emailAddress", "active",
    "timeZone", "accountType", "avatarUrls",
    "publicName", "email", "profilePicture", "type",
)


@dataclass
class _Entry:
    user: dict
    keys: tuple[str, ...]
    cached_at: float


@dataclass
class CacheStats:
    size: int
    users: int
    max_size: int
    ttl_seconds: float
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    keys: list[str] = field(default_factory=list)


def normalize_key(identifier: str) -> str:
    return identifier.strip().lower()


def cache_key_for(account_id: str | None = None, username: str | None = None,
                  email: str | None = None) -> str | None:
    """Preferred lookup key for an identifier bundle."""
    for value in (account_id, username, email):
        if value:
            return normalize_key(value)
    return None


class UserCache:
    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # key -> entry; order is LRU (oldest first)
        self._index: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._index)

    def _expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.cached_at > self.ttl_seconds

    def _drop(self, entry: _Entry) -> None:
        for key in entry.keys:
            if self._index.get(key) is entry:
                del self._index[key]

    def _touch(self, entry: _Entry) -> None:
        for key in entry.keys:
            self._index.move_to_end(key)

    def get(self, identifier: str) -> dict | None:
        if not identifier:
            return None
        entry = self._index.get(normalize_key(identifier))
        if entry is None:
            self._misses += 1
            return None
        if self._expired(entry):
            self._drop(entry)
            self._misses += 1
            return None
        self._touch(entry)
        self._hits += 1
        return {**entry.user, "cachedAt": int(entry.cached_at * 1000)}

    def set(self, user: dict) -> None:
        keys = tuple(dict.fromkeys(
            normalize_key(user[f]) for f in IDENTIFIER_FIELDS
            if isinstance(user.get(f), str) and user[f].strip()
        ))
        if not keys:
            logger.debug("Not caching user without identifiers")
            return

        # An alias may point at an older record for this or another user;
        # drop those records whole so no stale alias survives.
        for key in keys:
            old = self._index.get(key)
            if old is not None:
                self._drop(old)

        entry = _Entry(
            user={k: user[k] for k in PROFILE_FIELDS if k in user},
            keys=keys,
            cached_at=self._clock(),
        )
        for key in keys:
            self._index[key] = entry

        while len(self._index) > self.max_size:
            _, oldest = next(iter(self._index.items()))
            if oldest is entry:
                break
            self._drop(oldest)
            self._evictions += 1

    def delete(self, identifier: str) -> bool:
        entry = self._index.get(normalize_key(identifier)) if identifier else None
        if entry is None:
            return False
        self._drop(entry)
        return True

    def clear(self) -> None:
        self._index.clear()

    def maintenance(self) -> int:
        """Remove every expired user; return how many were removed."""
        expired = {id(e): e for e in self._index.values() if self._expired(e)}
        for entry in expired.values():
            self._drop(entry)
        if expired:
            logger.debug("Removed %d expired users from cache", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._index),
            users=len({id(e) for e in self._index.values()}),
            max_size=self.max_size,
            ttl_seconds=self.ttl_seconds,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            keys=list(self._index),
        )
