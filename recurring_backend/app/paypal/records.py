"""Collaborator contracts for the host order and subscription aggregates."""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, Sequence


class OrderRecord(Protocol):
    """Order aggregate owned by the host store."""

    order_id: str
    order_key: str
    order_number: str
    currency: str
    status: str
    total: Decimal

    def get_payment_method(self) -> Optional[str]:
        ...

    def set_payment_method(self, payment_method: Optional[str]) -> None:
        ...

    def update_status(self, status: str, note: str = "") -> None:
        ...

    def add_note(self, text: str) -> None:
        ...

    def mark_payment_complete(self, transaction_id: Optional[str] = None) -> None:
        ...

    def get_meta(self, key: str) -> Optional[str]:
        ...

    def set_meta(self, key: str, value: str) -> None:
        ...

    def delete_meta(self, key: str) -> None:
        ...

    def needs_payment(self) -> bool:
        ...

    def is_parent_order(self) -> bool:
        """``True`` when the order created (rather than renewed) a subscription."""


class SubscriptionRecord(Protocol):
    """Subscription aggregate owned by the host store."""

    subscription_id: str
    status: str

    def is_manual(self) -> bool:
        ...

    def get_payment_method(self) -> Optional[str]:
        ...

    def set_payment_method(self, payment_method: Optional[str]) -> None:
        ...

    def update_status(self, status: str, note: str = "") -> None:
        ...

    def add_note(self, text: str) -> None:
        ...

    def get_meta(self, key: str) -> Optional[str]:
        ...

    def set_meta(self, key: str, value: str) -> None:
        ...

    def delete_meta(self, key: str) -> None:
        ...


class OrderStore(Protocol):
    """Lookup of host orders by identifier."""

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        ...


class SubscriptionRepository(Protocol):
    """Lookup of host subscriptions."""

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        ...

    def find_ids_by_billing_profile(self, profile_id: str) -> Sequence[str]:
        ...

    def subscriptions_for_order(self, order: OrderRecord) -> Sequence[SubscriptionRecord]:
        ...


__all__ = ["OrderRecord", "OrderStore", "SubscriptionRecord", "SubscriptionRepository"]
