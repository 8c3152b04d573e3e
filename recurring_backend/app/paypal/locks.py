"""Time-windowed guard against capturing an initial order twice.

When reference transactions are unavailable the customer's browser redirect
and the scheduled charge may both try to collect the first payment. The
redirect stamps the order; for ``threshold_seconds`` afterwards the
scheduled path sees the order as not needing payment. The stamp is not a
mutex: once the window passes a second attempt is no longer suppressed.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .capability import Clock, utcnow
from .models import PAYMENT_LOCK_META_KEY, PaymentLock
from .records import OrderRecord

logger = logging.getLogger(__name__)


class PaymentLockGuard:
    def __init__(
        self,
        gateway_id: str,
        *,
        threshold_seconds: int = 180,
        reference_transactions_enabled: Callable[[], bool],
        clock: Clock = utcnow,
    ) -> None:
        self._gateway_id = gateway_id
        self._threshold_seconds = threshold_seconds
        self._reference_transactions_enabled = reference_transactions_enabled
        self._clock = clock

    def applies(self, order: OrderRecord) -> bool:
        if order.get_payment_method() != self._gateway_id:
            return False
        if not order.is_parent_order():
            return False
        return not self._reference_transactions_enabled()

    def current_lock(self, order: OrderRecord) -> Optional[PaymentLock]:
        raw = order.get_meta(PAYMENT_LOCK_META_KEY)
        if not raw:
            return None
        try:
            acquired_at = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unreadable payment lock on order %s: %r", order.order_id, raw)
            return None
        return PaymentLock(
            order_id=str(order.order_id),
            acquired_at=acquired_at,
            ttl_seconds=self._threshold_seconds,
        )

    def acquire(self, order: OrderRecord) -> Optional[PaymentLock]:
        """Stamp the order when the customer lands on the order-received view."""

        if not self.applies(order) or not order.needs_payment():
            return None
        lock = PaymentLock(
            order_id=str(order.order_id),
            acquired_at=self._clock(),
            ttl_seconds=self._threshold_seconds,
        )
        order.set_meta(PAYMENT_LOCK_META_KEY, lock.acquired_at.isoformat())
        logger.debug("Payment lock acquired for order %s", order.order_id)
        return lock

    def is_suppressed(self, order: OrderRecord) -> bool:
        if not self.applies(order):
            return False
        lock = self.current_lock(order)
        return lock is not None and lock.is_active(self._clock())

    def needs_payment(self, order: OrderRecord) -> bool:
        """The order's real ``needs_payment`` unless a fresh lock suppresses it."""

        needs_payment = order.needs_payment()
        if needs_payment and self.is_suppressed(order):
            logger.info("Suppressing duplicate capture for order %s", order.order_id)
            return False
        return needs_payment

    def release(self, order: OrderRecord) -> None:
        if order.get_meta(PAYMENT_LOCK_META_KEY):
            order.delete_meta(PAYMENT_LOCK_META_KEY)


__all__ = ["PaymentLockGuard"]
