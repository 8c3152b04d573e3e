from __future__ import annotations

from recurring_backend.app.paypal import (
    ExternalApiError,
    FraudFilter,
    HardError,
    PaymentSuccess,
    ReconciliationOrchestrator,
    SoftDecline,
    TransactionOutcome,
    TransactionStatus,
)
from recurring_backend.tests.fakes import FakeOrder, FakeSubscription


def test_api_error_fails_order_with_formatted_note():
    order = FakeOrder()
    outcome = TransactionOutcome(api_error_code="10417", api_error_message="Error: Transaction refused")

    result = ReconciliationOrchestrator().reconcile(order, outcome)

    assert isinstance(result, HardError)
    assert result.cause.code == "10417"
    assert order.status == "failed"
    assert order.status_history == [("failed", "PayPal API error: (10417) Error: Transaction refused.")]


def test_error_note_keeps_existing_period():
    error = ExternalApiError(code="500", message="Server error.")

    assert error.as_note() == "(500) Server error."


def test_held_outcome_moves_order_on_hold_once():
    order = FakeOrder()
    orchestrator = ReconciliationOrchestrator()
    outcome = TransactionOutcome(
        status_code=TransactionStatus.PENDING,
        pending_reason="paymentreview",
        fraud_filters=[FraudFilter(id="1", name="AVS No Match")],
    )

    first = orchestrator.reconcile(order, outcome)
    second = orchestrator.reconcile(order, outcome)

    assert isinstance(first, SoftDecline)
    assert first.reason == "paymentreview AVS No Match: 1"
    assert isinstance(second, SoftDecline)
    assert order.status_history == [("on-hold", "PayPal transaction held: paymentreview AVS No Match: 1")]
    assert order.notes.count("PayPal transaction held: paymentreview AVS No Match: 1") == 2


def test_held_status_is_configurable():
    order = FakeOrder()

    ReconciliationOrchestrator(held_order_status="pending-review").reconcile(
        order, TransactionOutcome(status_code=TransactionStatus.PENDING, pending_reason="echeck")
    )

    assert order.status == "pending-review"


def test_declined_outcome_fails_order():
    order = FakeOrder()

    result = ReconciliationOrchestrator().reconcile(
        order, TransactionOutcome(status_code=TransactionStatus.DENIED, raw_status="Denied")
    )

    assert isinstance(result, SoftDecline)
    assert order.status == "failed"
    assert order.status_history[0][1] == "PayPal payment declined: Denied"


def test_non_approved_outcome_leaves_paid_order_untouched():
    order = FakeOrder(status="completed")
    orchestrator = ReconciliationOrchestrator()

    held = orchestrator.reconcile(
        order, TransactionOutcome(status_code=TransactionStatus.PENDING, raw_status="Pending", transaction_id="TX-1")
    )
    denied = orchestrator.reconcile(
        order, TransactionOutcome(status_code=TransactionStatus.DENIED, raw_status="Denied")
    )

    assert isinstance(held, SoftDecline)
    assert isinstance(denied, SoftDecline)
    assert order.status == "completed"
    assert order.status_history == []
    assert order.notes == [
        "PayPal payment status Pending ignored; order already completed (ID: TX-1).",
        "PayPal payment status Denied ignored; order already completed (ID: N/A).",
    ]


def test_approved_outcome_notes_then_marks_paid():
    order = FakeOrder()

    result = ReconciliationOrchestrator().reconcile(
        order, TransactionOutcome(status_code=TransactionStatus.COMPLETED, transaction_id="TX-1")
    )

    assert result == PaymentSuccess(transaction_id="TX-1")
    assert order.notes == ["PayPal payment approved (ID: TX-1)"]
    assert order.completed_with == ["TX-1"]
    assert order.status == "processing"


def test_reconcile_approved_twice_is_idempotent():
    order = FakeOrder()
    orchestrator = ReconciliationOrchestrator()
    outcome = TransactionOutcome(status_code=TransactionStatus.COMPLETED, transaction_id="TX-1")

    orchestrator.reconcile(order, outcome)
    result = orchestrator.reconcile(order, outcome)

    assert result == PaymentSuccess(transaction_id="TX-1")
    assert order.completed_with == ["TX-1"]
    assert order.status == "processing"
    assert len(order.notes) > 1


def test_zero_amount_marks_paid_without_transaction():
    order = FakeOrder()

    result = ReconciliationOrchestrator().settle_zero_amount(order)

    assert result == PaymentSuccess(transaction_id=None)
    assert order.completed_with == [None]


def test_refund_and_reversal_are_idempotent():
    order = FakeOrder(status="processing")
    orchestrator = ReconciliationOrchestrator()

    assert orchestrator.refund(order, "Refunded") is True
    assert orchestrator.refund(order, "Refunded") is False
    assert order.status == "refunded"

    other = FakeOrder(status="completed")
    orchestrator.reverse(other, "chargeback")
    orchestrator.reverse(other, "chargeback")
    assert [status for status, _ in other.status_history] == ["on-hold"]


def test_cancel_subscription_twice_only_adds_note():
    subscription = FakeSubscription("sub-1")
    orchestrator = ReconciliationOrchestrator()

    assert orchestrator.cancel_subscription(subscription, "Agreement cancelled") is True
    assert orchestrator.cancel_subscription(subscription, "Agreement cancelled") is False
    assert subscription.status_history == [("cancelled", "Agreement cancelled")]
    assert subscription.notes == ["Agreement cancelled", "Agreement cancelled"]
