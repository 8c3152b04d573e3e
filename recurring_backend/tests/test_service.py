"""Tests for charging and billing-agreement completion through the service."""
from __future__ import annotations

from decimal import Decimal
from urllib import error as urllib_error

import pytest

from recurring_backend.app.paypal import (
    HardError,
    InMemoryCapabilityStore,
    PaymentSuccess,
    SoftDecline,
    build_reconciliation_service,
)
from recurring_backend.app.paypal.models import PAYMENT_LOCK_META_KEY, PROFILE_ID_META_KEY
from recurring_backend.tests.fakes import (
    FakeAuditHook,
    FakeClock,
    FakeCredentialsAlert,
    FakeOrder,
    FakeOrderStore,
    FakeSubscription,
    FakeSubscriptionRepository,
    FakeTransport,
    make_config,
    nvp_body,
)

CAPABILITY_DENIED = nvp_body(ACK="Failure", L_ERRORCODE0="11452", L_LONGMESSAGE0="Merchant not enabled")


@pytest.fixture
def service_components():
    transport = FakeTransport()
    clock = FakeClock()
    orders = FakeOrderStore()
    subscriptions = FakeSubscriptionRepository()
    service = build_reconciliation_service(
        make_config(),
        orders=orders,
        subscriptions=subscriptions,
        capability_store=InMemoryCapabilityStore(),
        audit_hook=FakeAuditHook(),
        credentials_alert=FakeCredentialsAlert(),
        transport=transport,
        clock=clock,
    )
    return transport, clock, orders, subscriptions, service


def test_zero_amount_skips_the_processor(service_components):
    transport, _, _, _, service = service_components
    order = FakeOrder(total=Decimal("0.00"), meta={PROFILE_ID_META_KEY: "B-555"})

    result = service.charge(order)

    assert result == PaymentSuccess(transaction_id=None)
    assert order.completed_with == [None]
    assert transport.requests == []


def test_reference_agreement_is_charged_and_reconciled(service_components):
    transport, _, _, _, service = service_components
    transport.queue(nvp_body(ACK="Success", PAYMENTSTATUS="Completed", TRANSACTIONID="TX-77"))
    order = FakeOrder(parent=False, meta={PROFILE_ID_META_KEY: "B-555"})

    result = service.charge(order, Decimal("9.99"))

    assert result == PaymentSuccess(transaction_id="TX-77")
    assert transport.last_params["AMT"] == "9.99"
    assert order.completed_with == ["TX-77"]


def test_declined_charge_is_a_soft_decline(service_components):
    transport, _, _, _, service = service_components
    transport.queue(nvp_body(ACK="Success", PAYMENTSTATUS="Denied"))
    order = FakeOrder(parent=False, meta={PROFILE_ID_META_KEY: "B-555"})

    result = service.charge(order)

    assert isinstance(result, SoftDecline)
    assert order.status == "failed"


def test_standard_recurring_profile_is_not_charged(service_components):
    transport, _, _, _, service = service_components
    order = FakeOrder(meta={PROFILE_ID_META_KEY: "I-ABC987"})

    result = service.charge(order)

    assert isinstance(result, SoftDecline)
    assert transport.requests == []
    assert order.status == "pending"


def test_missing_profile_falls_back_to_manual_payment(service_components):
    transport, _, _, _, service = service_components
    order = FakeOrder()

    result = service.charge(order)

    assert isinstance(result, SoftDecline)
    assert order.payment_method is None
    assert "manual payment" in order.notes[0]
    assert transport.requests == []


def test_client_error_becomes_hard_error(service_components):
    transport, _, _, _, service = service_components
    transport.queue(urllib_error.URLError("connection reset"))
    order = FakeOrder(parent=False, meta={PROFILE_ID_META_KEY: "B-555"})

    result = service.charge(order)

    assert isinstance(result, HardError)
    assert order.status == "failed"
    assert order.status_history[0][1] == "PayPal API error: (http_request_failed) connection reset."


def test_amount_over_limit_becomes_hard_error(service_components):
    transport, _, _, _, service = service_components
    order = FakeOrder(parent=False, meta={PROFILE_ID_META_KEY: "B-555"})

    result = service.charge(order, Decimal("12000"))

    assert isinstance(result, HardError)
    assert result.cause.code == "amount_limit"
    assert transport.requests == []


def test_fresh_payment_lock_suppresses_scheduled_charge(service_components):
    transport, clock, _, _, service = service_components
    transport.queue(CAPABILITY_DENIED)
    order = FakeOrder(meta={PROFILE_ID_META_KEY: "B-555"})

    service.on_order_received(order)
    clock.advance(30)

    assert service.order_needs_payment(order) is False
    result = service.charge(order)
    assert isinstance(result, SoftDecline)
    assert len(transport.requests) == 1


def test_payment_complete_and_cancel_hooks_release_lock(service_components):
    transport, _, _, _, service = service_components
    transport.queue(CAPABILITY_DENIED)
    paid = FakeOrder("1")
    cancelled = FakeOrder("2")

    service.on_order_received(paid)
    service.on_order_received(cancelled)
    assert paid.get_meta(PAYMENT_LOCK_META_KEY)

    service.on_payment_complete(paid)
    service.on_order_cancelled(cancelled)

    assert paid.get_meta(PAYMENT_LOCK_META_KEY) is None
    assert cancelled.get_meta(PAYMENT_LOCK_META_KEY) is None


def test_recheck_capability_bypasses_cache(service_components):
    transport, _, _, _, service = service_components
    transport.queue(CAPABILITY_DENIED)
    transport.queue(nvp_body(ACK="Success", TOKEN="EC-1"))

    assert service.reference_transactions_enabled() is False
    assert service.reference_transactions_enabled() is False
    assert service.recheck_capability() is True
    assert len(transport.requests) == 2


def test_complete_billing_agreement_stores_profile_and_charges(service_components):
    transport, _, _, subscriptions, service = service_components
    transport.queue(nvp_body(ACK="Success", BILLINGAGREEMENTID="B-900"))
    transport.queue(nvp_body(ACK="Success", TOKEN="EC-CHECK"))
    transport.queue(nvp_body(ACK="Success", PAYMENTSTATUS="Completed", TRANSACTIONID="TX-900"))
    order = FakeOrder(payment_method=None)
    subscription = subscriptions.add(FakeSubscription("sub-9", payment_method=None), order_id=order.order_id)

    result = service.complete_billing_agreement(order, "EC-TOKEN")

    assert result == PaymentSuccess(transaction_id="TX-900")
    assert order.payment_method == "paypal"
    assert order.get_meta(PROFILE_ID_META_KEY) == "B-900"
    assert subscription.get_meta(PROFILE_ID_META_KEY) == "B-900"
    assert subscription.payment_method == "paypal"
    assert transport.requests[2]["params"]["REFERENCEID"] == "B-900"


def test_complete_billing_agreement_zero_total_is_paid_without_charge(service_components):
    transport, _, _, _, service = service_components
    transport.queue(nvp_body(ACK="Success", BILLINGAGREEMENTID="B-901"))
    order = FakeOrder(total=Decimal("0"))

    result = service.complete_billing_agreement(order, "EC-TOKEN")

    assert result == PaymentSuccess(transaction_id=None)
    assert len(transport.requests) == 1


def test_complete_billing_agreement_api_error_fails_order(service_components):
    transport, _, _, _, service = service_components
    transport.queue(nvp_body(ACK="Failure", L_ERRORCODE0="10410", L_SHORTMESSAGE0="Invalid token"))
    order = FakeOrder()

    result = service.complete_billing_agreement(order, "EC-BAD")

    assert isinstance(result, HardError)
    assert order.status == "failed"
    assert order.get_meta(PROFILE_ID_META_KEY) is None
