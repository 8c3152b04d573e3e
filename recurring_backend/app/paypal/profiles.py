"""Billing profile classification and profile-to-subscription lookups."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import BillingProfile, ProfileFormat, ProfileKind
from .records import SubscriptionRepository

REFERENCE_AGREEMENT_PREFIX = "B-"


class BillingProfileResolver:
    """Classifies stored billing profile identifiers."""

    def __init__(self, legacy_prefixes: Iterable[str] = ()) -> None:
        self._legacy_prefixes: Tuple[str, ...] = tuple(prefix for prefix in legacy_prefixes if prefix)

    def resolve(self, profile_id: Optional[str]) -> BillingProfile:
        identifier = (profile_id or "").strip()
        if not identifier:
            return BillingProfile(id="", kind=ProfileKind.UNKNOWN)

        if identifier.startswith(REFERENCE_AGREEMENT_PREFIX):
            kind = ProfileKind.REFERENCE_AGREEMENT
        else:
            kind = ProfileKind.STANDARD_RECURRING

        format_version = ProfileFormat.CURRENT
        if self.is_legacy(identifier):
            format_version = ProfileFormat.LEGACY
        return BillingProfile(id=identifier, kind=kind, format_version=format_version)

    def is_legacy(self, profile_id: str) -> bool:
        return any(profile_id.startswith(prefix) for prefix in self._legacy_prefixes)


class ProfileSubscriptionIndex:
    """Memoizes which subscriptions own a billing profile id.

    Entries live until :meth:`invalidate` or :meth:`clear` is called; the
    webhook handler invalidates an id once the agreement is cancelled.
    """

    def __init__(self, subscriptions: SubscriptionRepository) -> None:
        self._subscriptions = subscriptions
        self._entries: Dict[str, List[str]] = {}

    def subscription_ids(self, profile_id: str) -> Sequence[str]:
        if profile_id not in self._entries:
            self._entries[profile_id] = list(self._subscriptions.find_ids_by_billing_profile(profile_id))
        return list(self._entries[profile_id])

    def invalidate(self, profile_id: str) -> None:
        self._entries.pop(profile_id, None)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["BillingProfileResolver", "ProfileSubscriptionIndex", "REFERENCE_AGREEMENT_PREFIX"]
