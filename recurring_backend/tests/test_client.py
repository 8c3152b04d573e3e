from __future__ import annotations

import socket
from decimal import Decimal
from urllib import error as urllib_error

import pytest

from recurring_backend.app.paypal import (
    ExternalApiError,
    ReferenceTransactionClient,
    TransactionStatus,
    TransportResponse,
    WebhookEvent,
)
from recurring_backend.app.paypal.config import PRODUCTION_ENDPOINT, PRODUCTION_IPN_ENDPOINT, SANDBOX_ENDPOINT
from recurring_backend.tests.fakes import (
    FakeAuditHook,
    FakeCredentialsAlert,
    FakeOrder,
    FakeTransport,
    make_config,
    nvp_body,
)


@pytest.fixture
def client_components():
    transport = FakeTransport()
    audit_hook = FakeAuditHook()
    alert = FakeCredentialsAlert()
    client = ReferenceTransactionClient(
        make_config(brand_name="Book Club"),
        audit_hook=audit_hook,
        credentials_alert=alert,
        transport=transport,
    )
    return transport, audit_hook, alert, client


def test_do_reference_transaction_builds_request_and_parses_outcome(client_components):
    transport, _, _, client = client_components
    transport.queue(nvp_body(ACK="Success", PAYMENTSTATUS="Completed", TRANSACTIONID="TX-100"))
    order = FakeOrder(order_number="#1001", total=Decimal("12.00"))

    outcome = client.do_reference_transaction("B-555", order)

    request = transport.requests[0]
    assert request["url"] == PRODUCTION_ENDPOINT
    assert request["timeout"] == 60.0
    assert request["params"]["USER"] == "merchant_api1.example.com"
    assert request["params"]["REFERENCEID"] == "B-555"
    assert request["params"]["AMT"] == "12.00"
    assert request["params"]["INVNUM"] == "WC-1001"
    assert request["params"]["L_NAME0"] == "Book Club - Order"
    assert request["params"]["NOTIFYURL"] == "http://localhost:8000/api/paypal/ipn"
    assert outcome.status_code == TransactionStatus.COMPLETED
    assert outcome.transaction_id == "TX-100"


def test_explicit_amount_and_invoice_number_override_order(client_components):
    transport, _, _, client = client_components
    transport.queue(nvp_body(ACK="Success", PAYMENTSTATUS="Completed"))

    client.do_reference_transaction("B-555", FakeOrder(), amount=Decimal("3.5"), invoice_number="INV-9")

    assert transport.last_params["AMT"] == "3.50"
    assert transport.last_params["INVNUM"] == "INV-9"


def test_sandbox_flag_selects_endpoint_and_credentials():
    transport = FakeTransport(nvp_body(ACK="Success", BILLINGAGREEMENTID="B-1"))
    client = ReferenceTransactionClient(
        make_config(sandbox=True),
        audit_hook=FakeAuditHook(),
        credentials_alert=FakeCredentialsAlert(),
        transport=transport,
    )

    result = client.create_billing_agreement("EC-123")

    assert result.billing_agreement_id == "B-1"
    assert transport.requests[0]["url"] == SANDBOX_ENDPOINT
    assert transport.last_params["USER"] == "sandbox_api1.example.com"
    assert transport.last_params["TOKEN"] == "EC-123"
    assert transport.last_params["METHOD"] == "CreateBillingAgreement"


def test_audit_hook_receives_sanitized_pairs(client_components):
    transport, audit_hook, _, client = client_components
    transport.queue(
        TransportResponse(
            status_code=200,
            reason="OK",
            body=nvp_body(ACK="Success", BILLINGAGREEMENTID="B-2"),
            headers={"Authorization": "Bearer abc"},
        )
    )

    client.create_billing_agreement("EC-1")

    request_data, response_data = audit_hook.records[0]
    assert "LIVEPASSWORD" not in str(request_data)
    assert "LIVE-SIGNATURE" not in str(request_data)
    assert response_data["headers"]["Authorization"] == "**********"
    assert response_data["code"] == 200
    assert str(request_data["duration"]).endswith("s")


@pytest.mark.parametrize(
    "failure",
    [urllib_error.URLError("connection refused"), socket.timeout("timed out")],
)
def test_transport_failures_raise_external_api_error(client_components, failure):
    transport, audit_hook, _, client = client_components
    transport.queue(failure)

    with pytest.raises(ExternalApiError) as excinfo:
        client.create_billing_agreement("EC-1")

    assert excinfo.value.code == "http_request_failed"
    assert audit_hook.records[0][1]["code"] is None


def test_non_success_http_status_raises(client_components):
    transport, _, _, client = client_components
    transport.queue(TransportResponse(status_code=503, reason="Service Unavailable", body=""))

    with pytest.raises(ExternalApiError) as excinfo:
        client.do_reference_transaction("B-555", FakeOrder())

    assert excinfo.value.as_note() == "(503) Service Unavailable."


def test_check_capability_true_on_success(client_components):
    transport, _, alert, client = client_components
    transport.queue(nvp_body(ACK="Success", TOKEN="EC-99"))

    assert client.check_capability() is True
    assert transport.last_params["METHOD"] == "SetExpressCheckout"
    assert transport.last_params["RETURNURL"].endswith("?action=reference_transaction_account_check")
    assert alert.flagged == []


def test_check_capability_flags_rejected_credentials(client_components):
    transport, _, alert, client = client_components
    transport.queue(
        nvp_body(ACK="Failure", L_ERRORCODE0="10002", L_LONGMESSAGE0="Username/Password is incorrect")
    )

    assert client.check_capability() is False
    assert alert.flagged == [client.credentials.fingerprint]


def test_check_capability_false_when_not_permitted(client_components):
    transport, _, alert, client = client_components
    transport.queue(nvp_body(ACK="Failure", L_ERRORCODE0="11452", L_LONGMESSAGE0="Merchant not enabled"))

    assert client.check_capability() is False
    assert alert.flagged == []


def test_check_capability_false_on_transport_error(client_components):
    transport, _, _, client = client_components
    transport.queue(urllib_error.URLError("dns failure"))

    assert client.check_capability() is False


def test_verify_notification_posts_raw_body_back(client_components):
    transport, audit_hook, _, client = client_components
    transport.queue("VERIFIED")
    event = WebhookEvent.from_fields(
        {"txn_type": "merch_pmt", "payment_status": "Completed"},
        raw_body="txn_type=merch_pmt&payment_status=Completed",
    )

    assert client.verify_notification(event) is True
    assert transport.requests[0]["url"] == PRODUCTION_IPN_ENDPOINT
    request_data, response_data = audit_hook.records[0]
    assert request_data["body"] == "cmd=_notify-validate&txn_type=merch_pmt&payment_status=Completed"
    assert response_data["body"] == "VERIFIED"


@pytest.mark.parametrize(
    "reply",
    ["INVALID", TransportResponse(status_code=500, reason="Server Error", body=""), OSError("timed out")],
)
def test_verify_notification_false_unless_verified(client_components, reply):
    transport, _, _, client = client_components
    transport.queue(reply)

    assert client.verify_notification(WebhookEvent.from_fields({"txn_type": "mp_cancel"})) is False
