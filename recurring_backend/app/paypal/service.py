"""Reconciliation service composing the client, caches, guard and handlers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .capability import CapabilityCache, CapabilityStore, Clock, utcnow
from .client import (
    ApiAuditHook,
    CredentialsAlert,
    NotificationVerifier,
    NVPTransport,
    ReferenceTransactionClient,
)
from .config import ProcessorConfig
from .exceptions import ExternalApiError, ReconciliationError, ValidationError
from .locks import PaymentLockGuard
from .models import NOT_AVAILABLE, PROFILE_ID_META_KEY, ProfileKind, WebhookEvent, to_amount
from .orchestrator import ChargeResult, ReconciliationOrchestrator, SoftDecline
from .profiles import BillingProfileResolver, ProfileSubscriptionIndex
from .records import OrderRecord, OrderStore, SubscriptionRepository
from .webhooks import WebhookHandler, WebhookResult

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationService:
    """Entry points used by the scheduler, the checkout return flow and the IPN route."""

    config: ProcessorConfig
    client: ReferenceTransactionClient
    resolver: BillingProfileResolver
    capability_cache: CapabilityCache
    profile_index: ProfileSubscriptionIndex
    lock_guard: PaymentLockGuard
    orchestrator: ReconciliationOrchestrator
    webhook_handler: WebhookHandler
    subscriptions: SubscriptionRepository
    notification_verifier: NotificationVerifier

    def reference_transactions_enabled(self, bypass_cache: bool = False) -> bool:
        return self.capability_cache.is_enabled(self.config.credentials, bypass_cache=bypass_cache)

    def recheck_capability(self) -> bool:
        return self.reference_transactions_enabled(bypass_cache=True)

    def charge(self, order: OrderRecord, amount: Optional[Decimal] = None) -> ChargeResult:
        """Collect ``amount`` (defaults to the order total) for a renewal or initial order."""

        amount_due = to_amount(order.total if amount is None else amount)
        if amount_due == 0:
            return self.orchestrator.settle_zero_amount(order)

        profile = self.resolver.resolve(order.get_meta(PROFILE_ID_META_KEY))
        if profile.is_legacy:
            logger.info("Order %s uses deprecated billing profile format %s", order.order_id, profile.id)
        if profile.kind == ProfileKind.STANDARD_RECURRING:
            # PayPal bills standard recurring profiles on its own schedule.
            return SoftDecline(reason=f"Profile {profile.id} is billed by PayPal")

        if profile.kind == ProfileKind.UNKNOWN:
            order.set_payment_method(None)
            order.add_note("No PayPal billing agreement on file; switched to manual payment.")
            return SoftDecline(reason="No billing agreement on file")

        if self.lock_guard.is_suppressed(order):
            return SoftDecline(reason="Payment already in progress")

        try:
            outcome = self.client.do_reference_transaction(profile.id, order, amount=amount_due)
        except ReconciliationError as exc:
            logger.warning("Reference transaction for order %s failed: %s", order.order_id, exc.as_note())
            return self.orchestrator.fail_with_error(order, exc)
        return self.orchestrator.reconcile(order, outcome)

    def complete_billing_agreement(self, order: OrderRecord, token: str) -> ChargeResult:
        """Turn an approved checkout token into a billing agreement and take the first payment."""

        try:
            result = self.client.create_billing_agreement(token)
        except ReconciliationError as exc:
            return self.orchestrator.fail_with_error(order, exc)

        if result.has_api_error or not result.billing_agreement_id:
            error = ExternalApiError(
                code=result.api_error_code or NOT_AVAILABLE,
                message=result.api_error_message or "No billing agreement returned",
            )
            return self.orchestrator.fail_with_error(order, error)

        agreement_id = result.billing_agreement_id
        order.set_payment_method(self.config.gateway_id)
        order.set_meta(PROFILE_ID_META_KEY, agreement_id)
        for subscription in self.subscriptions.subscriptions_for_order(order):
            subscription.set_payment_method(self.config.gateway_id)
            subscription.set_meta(PROFILE_ID_META_KEY, agreement_id)
        self.profile_index.invalidate(agreement_id)
        order.add_note(f"PayPal billing agreement {agreement_id} created.")
        return self.charge(order)

    def handle_webhook(self, event: WebhookEvent) -> WebhookResult:
        try:
            self.verify_notification(event)
            return self.webhook_handler.handle(event)
        except ValidationError as exc:
            logger.warning(
                "Rejected PayPal notification: %s",
                exc.as_note(),
                extra={"txn_type": event.transaction_type},
            )
            return WebhookResult.REJECTED

    def verify_notification(self, event: WebhookEvent) -> None:
        """Raise :class:`ValidationError` unless PayPal vouches for ``event``.

        When a receiver email is configured, a notification naming a different
        receiver is rejected even if PayPal verified it.
        """

        if not self.notification_verifier.verify_notification(event):
            raise ValidationError(code="unverified_notification", message="PayPal did not verify the notification")

        expected = self.config.receiver_email
        receiver = (event.get("receiver_email") or "").strip()
        if expected and receiver and receiver.lower() != expected.lower():
            raise ValidationError(
                code="receiver_mismatch",
                message=f"Notification addressed to {receiver}, expected {expected}",
            )

    def on_order_received(self, order: OrderRecord) -> None:
        self.lock_guard.acquire(order)

    def order_needs_payment(self, order: OrderRecord) -> bool:
        return self.lock_guard.needs_payment(order)

    def on_payment_complete(self, order: OrderRecord) -> None:
        self.lock_guard.release(order)

    def on_order_cancelled(self, order: OrderRecord) -> None:
        self.lock_guard.release(order)


def build_reconciliation_service(
    config: ProcessorConfig,
    *,
    orders: OrderStore,
    subscriptions: SubscriptionRepository,
    capability_store: CapabilityStore,
    audit_hook: ApiAuditHook,
    credentials_alert: CredentialsAlert,
    transport: Optional[NVPTransport] = None,
    notification_verifier: Optional[NotificationVerifier] = None,
    clock: Clock = utcnow,
) -> ReconciliationService:
    client = ReferenceTransactionClient(
        config,
        audit_hook=audit_hook,
        credentials_alert=credentials_alert,
        transport=transport,
    )
    capability_cache = CapabilityCache(
        client,
        capability_store,
        ttl_seconds=config.capability_cache_ttl_seconds,
        clock=clock,
    )
    lock_guard = PaymentLockGuard(
        config.gateway_id,
        threshold_seconds=config.payment_lock_seconds,
        reference_transactions_enabled=lambda: capability_cache.is_enabled(config.credentials),
        clock=clock,
    )
    orchestrator = ReconciliationOrchestrator(
        held_order_status=config.held_order_status,
        lock_guard=lock_guard,
    )
    profile_index = ProfileSubscriptionIndex(subscriptions)
    webhook_handler = WebhookHandler(
        config,
        orders=orders,
        subscriptions=subscriptions,
        profile_index=profile_index,
        orchestrator=orchestrator,
    )
    return ReconciliationService(
        config=config,
        client=client,
        resolver=BillingProfileResolver(config.legacy_profile_prefixes),
        capability_cache=capability_cache,
        profile_index=profile_index,
        lock_guard=lock_guard,
        orchestrator=orchestrator,
        webhook_handler=webhook_handler,
        subscriptions=subscriptions,
        notification_verifier=notification_verifier or client,
    )


__all__ = ["ReconciliationService", "build_reconciliation_service"]
