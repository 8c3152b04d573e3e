"""Caching of the account's reference-transaction capability."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Set

from .config import ApiCredentials
from .models import CapabilityCacheEntry

logger = logging.getLogger(__name__)

DEFAULT_NEGATIVE_TTL_SECONDS = 7 * 24 * 60 * 60

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CapabilityChecker(Protocol):
    def check_capability(self, credentials: Optional[ApiCredentials] = None) -> bool:
        ...


class CapabilityStore(Protocol):
    """Persistence for the permanent positive set and the negative TTL entries."""

    def is_enabled_account(self, fingerprint: str) -> bool:
        ...

    def add_enabled_account(self, fingerprint: str) -> None:
        ...

    def get_entry(self, fingerprint: str) -> Optional[CapabilityCacheEntry]:
        ...

    def save_entry(self, entry: CapabilityCacheEntry) -> None:
        ...

    def forget(self, fingerprint: str) -> None:
        ...


class InMemoryCapabilityStore:
    """Simple in-memory store suitable for tests and local development."""

    def __init__(self) -> None:
        self._enabled: Set[str] = set()
        self._entries: Dict[str, CapabilityCacheEntry] = {}

    def is_enabled_account(self, fingerprint: str) -> bool:
        return fingerprint in self._enabled

    def add_enabled_account(self, fingerprint: str) -> None:
        self._enabled.add(fingerprint)

    def get_entry(self, fingerprint: str) -> Optional[CapabilityCacheEntry]:
        return self._entries.get(fingerprint)

    def save_entry(self, entry: CapabilityCacheEntry) -> None:
        self._entries[entry.credential_fingerprint] = entry

    def forget(self, fingerprint: str) -> None:
        self._enabled.discard(fingerprint)
        self._entries.pop(fingerprint, None)

    def clear(self) -> None:
        self._enabled.clear()
        self._entries.clear()


class CapabilityCache:
    """Answers whether an account may use merchant-initiated reference transactions.

    Positive answers are kept forever because the capability does not regress
    without merchant action. Negative answers expire after ``ttl_seconds``
    since the processor can enable the capability at any time.
    """

    def __init__(
        self,
        checker: CapabilityChecker,
        store: CapabilityStore,
        *,
        ttl_seconds: int = DEFAULT_NEGATIVE_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self._checker = checker
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def is_enabled(self, credentials: ApiCredentials, bypass_cache: bool = False) -> bool:
        if not credentials.are_set:
            return False

        fingerprint = credentials.fingerprint
        if self._store.is_enabled_account(fingerprint):
            return True

        if not bypass_cache:
            entry = self._store.get_entry(fingerprint)
            if entry is not None and not entry.is_expired(self._clock(), self._ttl_seconds):
                return entry.enabled

        enabled = self._checker.check_capability(credentials)
        if enabled:
            self._store.add_enabled_account(fingerprint)
            logger.info("Reference transactions enabled for account", extra={"credential_fingerprint": fingerprint})
        else:
            self._store.save_entry(
                CapabilityCacheEntry(
                    credential_fingerprint=fingerprint,
                    enabled=False,
                    cached_at=self._clock(),
                )
            )
        return enabled

    def cached_entry(self, credentials: ApiCredentials) -> Optional[CapabilityCacheEntry]:
        """Return the cached answer without contacting the processor."""

        fingerprint = credentials.fingerprint
        if self._store.is_enabled_account(fingerprint):
            return CapabilityCacheEntry(credential_fingerprint=fingerprint, enabled=True, cached_at=self._clock())
        entry = self._store.get_entry(fingerprint)
        if entry is None or entry.is_expired(self._clock(), self._ttl_seconds):
            return None
        return entry

    def invalidate(self, fingerprint: str) -> None:
        self._store.forget(fingerprint)


__all__ = [
    "CapabilityCache",
    "CapabilityChecker",
    "CapabilityStore",
    "InMemoryCapabilityStore",
    "utcnow",
]
