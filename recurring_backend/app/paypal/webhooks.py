"""Routing of asynchronous processor notifications (IPN)."""
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Callable, Dict, Optional

from .config import ProcessorConfig
from .exceptions import ValidationError
from .models import (
    CANCELLED_PROFILE_ID_META_KEY,
    ENDED_SUBSCRIPTION_STATUSES,
    NOT_AVAILABLE,
    PROFILE_ID_META_KEY,
    TransactionOutcome,
    WebhookEvent,
)
from .orchestrator import ReconciliationOrchestrator
from .parser import classify_payment_type, classify_status
from .profiles import ProfileSubscriptionIndex
from .records import OrderRecord, OrderStore, SubscriptionRecord, SubscriptionRepository

logger = logging.getLogger(__name__)


class TransactionType(str, Enum):
    AGREEMENT_CREATED = "mp_signup"
    AGREEMENT_CANCELLED = "mp_cancel"
    PAYMENT_RECEIVED = "merch_pmt"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    DENIED = "denied"
    EXPIRED = "expired"
    VOIDED = "voided"
    REFUNDED = "refunded"
    REVERSED = "reversed"
    CANCELED_REVERSAL = "canceled_reversal"


class WebhookResult(str, Enum):
    HANDLED = "handled"
    IGNORED = "ignored"
    REJECTED = "rejected"


def parse_correlation_token(token: Optional[str]) -> Dict[str, str]:
    """Decode the ``custom`` field into ``order_id`` and ``order_key``."""

    if not token:
        raise ValidationError(code="missing_token", message="Notification has no correlation token")
    try:
        payload = json.loads(token)
    except ValueError as exc:
        raise ValidationError(code="invalid_token", message="Correlation token is not valid JSON") from exc
    if not isinstance(payload, dict) or not payload.get("order_id") or not payload.get("order_key"):
        raise ValidationError(code="invalid_token", message="Correlation token lacks order_id or order_key")
    return {"order_id": str(payload["order_id"]), "order_key": str(payload["order_key"])}


class WebhookHandler:
    """Dispatches notifications by transaction type, then by payment status."""

    def __init__(
        self,
        config: ProcessorConfig,
        *,
        orders: OrderStore,
        subscriptions: SubscriptionRepository,
        profile_index: ProfileSubscriptionIndex,
        orchestrator: ReconciliationOrchestrator,
    ) -> None:
        self._config = config
        self._orders = orders
        self._subscriptions = subscriptions
        self._profile_index = profile_index
        self._orchestrator = orchestrator

    def handle(self, event: WebhookEvent) -> WebhookResult:
        try:
            transaction_type = TransactionType(event.transaction_type)
        except ValueError:
            logger.info("Ignoring notification with transaction type %r", event.transaction_type)
            return WebhookResult.IGNORED

        if transaction_type == TransactionType.AGREEMENT_CREATED:
            logger.debug("Billing agreement created: %s", event.get("mp_id", NOT_AVAILABLE))
            return WebhookResult.HANDLED
        if transaction_type == TransactionType.AGREEMENT_CANCELLED:
            return self.handle_agreement_cancelled(event)
        return self.handle_payment(event)

    def handle_agreement_cancelled(self, event: WebhookEvent) -> WebhookResult:
        profile_id = event.get("mp_id")
        if not profile_id:
            raise ValidationError(code="missing_profile", message="Cancellation notification has no mp_id")

        for subscription_id in self._profile_index.subscription_ids(profile_id):
            subscription = self._subscriptions.get_subscription(subscription_id)
            if subscription is None or not self._is_cancellable(subscription):
                continue
            try:
                self._orchestrator.cancel_subscription(
                    subscription,
                    f"Billing agreement {profile_id} cancelled at PayPal; subscription cancelled.",
                )
                self._clear_billing_profile(subscription, profile_id)
            except Exception:
                logger.exception(
                    "Failed to cancel subscription %s for billing agreement %s",
                    subscription.subscription_id,
                    profile_id,
                )
                continue
            logger.info(
                "Subscription %s cancelled after billing agreement cancellation",
                subscription.subscription_id,
                extra={"billing_profile_id": profile_id},
            )

        self._profile_index.invalidate(profile_id)
        return WebhookResult.HANDLED

    def handle_payment(self, event: WebhookEvent) -> WebhookResult:
        order = self.resolve_order(event)
        if order.get_payment_method() != self._config.gateway_id:
            logger.info("Ignoring payment notification for order %s paid by another gateway", order.order_id)
            return WebhookResult.IGNORED

        raw_status = (event.get("payment_status") or "").strip().lower()
        if event.is_test and raw_status == PaymentStatus.PENDING.value:
            # Sandbox accounts report a nominal pending status for settled payments.
            if not self._config.sandbox:
                logger.warning("Coercing test notification status for order %s outside sandbox mode", order.order_id)
            raw_status = PaymentStatus.COMPLETED.value

        try:
            status = PaymentStatus(raw_status)
        except ValueError:
            logger.info("Ignoring payment status %r for order %s", raw_status, order.order_id)
            return WebhookResult.IGNORED

        PAYMENT_STATUS_HANDLERS[status](self, order, event, raw_status)
        return WebhookResult.HANDLED

    def resolve_order(self, event: WebhookEvent) -> OrderRecord:
        token = parse_correlation_token(event.correlation_token)
        order = self._orders.get_order(token["order_id"])
        if order is None:
            raise ValidationError(code="unknown_order", message=f"Order {token['order_id']} not found")
        if order.order_key != token["order_key"]:
            raise ValidationError(code="order_key_mismatch", message=f"Order key mismatch for order {order.order_id}")
        return order

    def _is_cancellable(self, subscription: SubscriptionRecord) -> bool:
        if subscription.is_manual():
            return False
        if subscription.get_payment_method() != self._config.gateway_id:
            return False
        return subscription.status not in ENDED_SUBSCRIPTION_STATUSES

    def _clear_billing_profile(self, subscription: SubscriptionRecord, profile_id: str) -> None:
        subscription.set_payment_method(None)
        subscription.delete_meta(PROFILE_ID_META_KEY)
        subscription.set_meta(CANCELLED_PROFILE_ID_META_KEY, profile_id)

    def _outcome(self, event: WebhookEvent, raw_status: str) -> TransactionOutcome:
        return TransactionOutcome(
            status_code=classify_status(raw_status),
            raw_status=raw_status,
            transaction_id=event.get("txn_id"),
            pending_reason=event.get("pending_reason", NOT_AVAILABLE),
            payment_type=classify_payment_type(event.get("payment_type")),
        )

    def _payment_settled(self, order: OrderRecord, event: WebhookEvent, raw_status: str) -> None:
        self._orchestrator.reconcile(order, self._outcome(event, raw_status))

    def _payment_refunded(self, order: OrderRecord, event: WebhookEvent, raw_status: str) -> None:
        transaction_id = event.get("parent_txn_id") or event.get("txn_id", NOT_AVAILABLE)
        self._orchestrator.refund(order, f"PayPal payment refunded (ID: {transaction_id}).")

    def _payment_reversed(self, order: OrderRecord, event: WebhookEvent, raw_status: str) -> None:
        self._orchestrator.reverse(order, event.get("reason_code", NOT_AVAILABLE))

    def _reversal_cancelled(self, order: OrderRecord, event: WebhookEvent, raw_status: str) -> None:
        order.add_note(f"PayPal reversal cancelled (ID: {event.get('txn_id', NOT_AVAILABLE)}).")


PaymentStatusHandler = Callable[[WebhookHandler, OrderRecord, WebhookEvent, str], None]

PAYMENT_STATUS_HANDLERS: Dict[PaymentStatus, PaymentStatusHandler] = {
    PaymentStatus.COMPLETED: WebhookHandler._payment_settled,
    PaymentStatus.PENDING: WebhookHandler._payment_settled,
    PaymentStatus.FAILED: WebhookHandler._payment_settled,
    PaymentStatus.DENIED: WebhookHandler._payment_settled,
    PaymentStatus.EXPIRED: WebhookHandler._payment_settled,
    PaymentStatus.VOIDED: WebhookHandler._payment_settled,
    PaymentStatus.REFUNDED: WebhookHandler._payment_refunded,
    PaymentStatus.REVERSED: WebhookHandler._payment_reversed,
    PaymentStatus.CANCELED_REVERSAL: WebhookHandler._reversal_cancelled,
}

_unhandled_statuses = set(PaymentStatus) - set(PAYMENT_STATUS_HANDLERS)
if _unhandled_statuses:
    raise RuntimeError(f"Payment statuses without a handler: {sorted(s.value for s in _unhandled_statuses)}")


__all__ = [
    "PAYMENT_STATUS_HANDLERS",
    "PaymentStatus",
    "TransactionType",
    "WebhookHandler",
    "WebhookResult",
    "parse_correlation_token",
]
