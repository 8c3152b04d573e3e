"""Turns normalized transaction outcomes into order and subscription state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import ExternalApiError, ReconciliationError, StateConflictError
from .locks import PaymentLockGuard
from .models import (
    ENDED_SUBSCRIPTION_STATUSES,
    NOT_AVAILABLE,
    PAID_ORDER_STATUSES,
    OrderStatus,
    SubscriptionStatus,
    TransactionOutcome,
)
from .records import OrderRecord, SubscriptionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSuccess:
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class SoftDecline:
    """Expected non-payment; the caller may fall back but nothing is broken."""

    reason: str


@dataclass(frozen=True)
class HardError:
    cause: ReconciliationError


ChargeResult = Union[PaymentSuccess, SoftDecline, HardError]


def _ensure_status_changes(order: OrderRecord, status: str) -> None:
    if order.status == status:
        raise StateConflictError(code="same_status", message=f"Order already {status}")


def _ensure_unpaid(order: OrderRecord) -> None:
    if order.status in PAID_ORDER_STATUSES:
        raise StateConflictError(code="already_paid", message=f"Order already {order.status}")


def _ensure_not_ended(subscription: SubscriptionRecord) -> None:
    if subscription.status in ENDED_SUBSCRIPTION_STATUSES:
        raise StateConflictError(code="subscription_ended", message=f"Subscription already {subscription.status}")


class ReconciliationOrchestrator:
    """Applies outcomes to host orders.

    Every transition is idempotent: moving a record into the state it already
    occupies raises :class:`StateConflictError` internally, which is swallowed
    and downgraded to an extra audit note.
    """

    def __init__(
        self,
        *,
        held_order_status: str = OrderStatus.ON_HOLD.value,
        lock_guard: Optional[PaymentLockGuard] = None,
    ) -> None:
        self._held_order_status = held_order_status
        self._lock_guard = lock_guard

    def reconcile(self, order: OrderRecord, outcome: TransactionOutcome) -> ChargeResult:
        if outcome.has_api_error:
            error = ExternalApiError(
                code=outcome.api_error_code or NOT_AVAILABLE,
                message=outcome.api_error_message or NOT_AVAILABLE,
            )
            self.fail(order, f"PayPal API error: {error.as_note()}")
            return HardError(cause=error)

        if not outcome.approved:
            try:
                _ensure_unpaid(order)
            except StateConflictError as exc:
                logger.info("Order %s: ignoring %s outcome, %s", order.order_id, outcome.raw_status, exc.message)
                order.add_note(
                    f"PayPal payment status {outcome.raw_status} ignored; order already {order.status} "
                    f"(ID: {outcome.transaction_id or NOT_AVAILABLE})."
                )
                return SoftDecline(reason=exc.message)

        if outcome.held:
            message = outcome.status_message.strip() or NOT_AVAILABLE
            self.transition(order, self._held_order_status, f"PayPal transaction held: {message}")
            return SoftDecline(reason=message)

        if not outcome.approved:
            message = outcome.status_message.strip() or outcome.raw_status
            self.fail(order, f"PayPal payment declined: {message}")
            return SoftDecline(reason=message)

        order.add_note(f"PayPal payment approved (ID: {outcome.transaction_id or NOT_AVAILABLE})")
        self.mark_paid(order, outcome.transaction_id)
        return PaymentSuccess(transaction_id=outcome.transaction_id)

    def settle_zero_amount(self, order: OrderRecord) -> PaymentSuccess:
        """Nothing to collect; mark paid without contacting the processor."""

        self.mark_paid(order, None)
        return PaymentSuccess(transaction_id=None)

    def fail(self, order: OrderRecord, note: str) -> bool:
        return self.transition(order, OrderStatus.FAILED.value, note)

    def fail_with_error(self, order: OrderRecord, error: ReconciliationError) -> HardError:
        self.fail(order, f"PayPal API error: {error.as_note()}")
        return HardError(cause=error)

    def mark_paid(self, order: OrderRecord, transaction_id: Optional[str]) -> bool:
        try:
            _ensure_unpaid(order)
        except StateConflictError as exc:
            logger.debug("Order %s already paid: %s", order.order_id, exc.message)
            if transaction_id:
                order.add_note(f"Duplicate payment confirmation ignored (ID: {transaction_id})")
            self._release_lock(order)
            return False

        order.mark_payment_complete(transaction_id)
        self._release_lock(order)
        return True

    def refund(self, order: OrderRecord, note: str) -> bool:
        return self.transition(order, OrderStatus.REFUNDED.value, note)

    def reverse(self, order: OrderRecord, reason: str) -> bool:
        return self.transition(order, OrderStatus.ON_HOLD.value, f"Payment reversed: {reason}")

    def cancel_subscription(self, subscription: SubscriptionRecord, note: str) -> bool:
        try:
            _ensure_not_ended(subscription)
        except StateConflictError as exc:
            logger.debug("Subscription %s: %s", subscription.subscription_id, exc.message)
            subscription.add_note(note)
            return False

        subscription.update_status(SubscriptionStatus.CANCELLED.value, note)
        return True

    def transition(self, order: OrderRecord, status: str, note: str) -> bool:
        """Move ``order`` to ``status`` or, if it is already there, only add ``note``."""

        try:
            _ensure_status_changes(order, status)
        except StateConflictError as exc:
            logger.debug("Order %s: %s", order.order_id, exc.message)
            order.add_note(note)
            return False

        order.update_status(status, note)
        if status == OrderStatus.CANCELLED.value:
            self._release_lock(order)
        return True

    def _release_lock(self, order: OrderRecord) -> None:
        if self._lock_guard is not None:
            self._lock_guard.release(order)


__all__ = [
    "ChargeResult",
    "HardError",
    "PaymentSuccess",
    "ReconciliationOrchestrator",
    "SoftDecline",
]
