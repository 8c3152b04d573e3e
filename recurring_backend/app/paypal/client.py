"""Synchronous client for the reference-transaction API and notification postbacks."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping, Optional, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from .config import ApiCredentials, ProcessorConfig
from .exceptions import ExternalApiError
from .models import BillingAgreementResult, TransactionOutcome, WebhookEvent, to_amount
from .nvp import NVPRequest, build_invoice_number
from .parser import NVPResponse, outcome_from_response, parse_billing_agreement
from .records import OrderRecord

logger = logging.getLogger(__name__)

USER_AGENT = "recurring-reconciler/1.0"
CAPABILITY_CHECK_ACTION = "reference_transaction_account_check"
IPN_VERIFIED_REPLY = "VERIFIED"


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    reason: str
    body: str
    headers: Dict[str, str] = field(default_factory=dict)


class NVPTransport(Protocol):
    """Blocking HTTP POST used to reach the processor."""

    def post(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        timeout: float,
    ) -> TransportResponse:
        ...


class ApiAuditHook(Protocol):
    """Receives every sanitized request/response pair."""

    def record(self, request_data: Dict[str, object], response_data: Dict[str, object]) -> None:
        ...


class CredentialsAlert(Protocol):
    """Persistent admin-facing warning for rejected API credentials."""

    def flag_invalid_credentials(self, fingerprint: str) -> None:
        ...


class NotificationVerifier(Protocol):
    """Confirms with the processor that a notification was sent by it."""

    def verify_notification(self, event: WebhookEvent) -> bool:
        ...


class UrllibTransport:
    """Default transport on top of :mod:`urllib.request`."""

    def post(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        timeout: float,
    ) -> TransportResponse:
        request = urllib_request.Request(url, data=body, headers=dict(headers), method="POST")
        try:
            with urllib_request.urlopen(request, timeout=timeout) as response:
                return TransportResponse(
                    status_code=response.status,
                    reason=response.reason or "",
                    body=response.read().decode("utf-8", errors="replace"),
                    headers=dict(response.headers.items()),
                )
        except urllib_error.HTTPError as exc:
            return TransportResponse(
                status_code=exc.code,
                reason=str(exc.reason),
                body=exc.read().decode("utf-8", errors="replace"),
                headers=dict(exc.headers.items()) if exc.headers else {},
            )


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    sanitized = dict(headers)
    for name in list(sanitized):
        if name.lower() == "authorization" and sanitized[name]:
            sanitized[name] = "*" * len(sanitized[name])
    return sanitized


class ReferenceTransactionClient:
    """Blocking request/response wrapper, one call per operation, no retries."""

    def __init__(
        self,
        config: ProcessorConfig,
        *,
        audit_hook: ApiAuditHook,
        credentials_alert: CredentialsAlert,
        transport: Optional[NVPTransport] = None,
    ) -> None:
        self._config = config
        self._audit_hook = audit_hook
        self._credentials_alert = credentials_alert
        self._transport = transport or UrllibTransport()

    @property
    def credentials(self) -> ApiCredentials:
        return self._config.credentials

    def create_billing_agreement(self, token: str) -> BillingAgreementResult:
        request = self._new_request()
        request.create_billing_agreement(token)
        return parse_billing_agreement(self._perform(request))

    def do_reference_transaction(
        self,
        profile_id: str,
        order: OrderRecord,
        *,
        amount: Optional[Decimal] = None,
        invoice_number: Optional[str] = None,
    ) -> TransactionOutcome:
        charge_amount = to_amount(order.total if amount is None else amount)
        request = self._new_request()
        request.do_reference_transaction(
            profile_id,
            order_id=str(order.order_id),
            order_key=order.order_key,
            amount=charge_amount,
            currency=order.currency or self._config.default_currency,
            invoice_number=invoice_number
            or build_invoice_number(self._config.invoice_prefix, order.order_number),
            item_name=self._item_name(order),
            notify_url=self._config.notify_url,
        )
        # Reference transaction responses carry unprefixed payment fields.
        return outcome_from_response(NVPResponse.from_body(self._perform(request)), prefix="")

    def check_capability(self, credentials: Optional[ApiCredentials] = None) -> bool:
        """Ask the processor whether billing agreements may be created."""

        active_credentials = credentials or self.credentials
        request = self._new_request(active_credentials)
        callback = f"{self._config.callback_url}?action={CAPABILITY_CHECK_ACTION}"
        request.set_express_checkout(
            currency=self._config.default_currency,
            return_url=callback,
            cancel_url=callback,
            billing_description=f"Orders with {self._config.brand_name or 'this store'}",
            brand_name=self._config.brand_name,
        )
        try:
            response = NVPResponse.from_body(self._perform(request))
        except ExternalApiError as exc:
            logger.warning("Reference transaction capability check failed: %s", exc.as_note())
            return False

        if not response.has_api_error:
            return True
        if response.has_credentials_error:
            self._credentials_alert.flag_invalid_credentials(active_credentials.fingerprint)
        return False

    def verify_notification(self, event: WebhookEvent) -> bool:
        """Post the notification back to PayPal and expect ``VERIFIED``."""

        body = event.postback_body()
        try:
            reply = self._post(self._config.ipn_endpoint, body, body)
        except ExternalApiError as exc:
            logger.warning("PayPal notification postback failed: %s", exc.as_note())
            return False
        return reply.strip() == IPN_VERIFIED_REPLY

    def _new_request(self, credentials: Optional[ApiCredentials] = None) -> NVPRequest:
        return NVPRequest(credentials or self.credentials, self._config.api_version)

    def _item_name(self, order: OrderRecord) -> str:
        if self._config.brand_name:
            return f"{self._config.brand_name} - Order"
        return f"Order {order.order_number}"

    def _perform(self, request: NVPRequest) -> str:
        return self._post(self._config.endpoint, request.to_string(), request.to_string_safe())

    def _post(self, url: str, body: str, safe_body: str) -> str:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "*/*",
            "User-Agent": USER_AGENT,
        }
        start_time = time.perf_counter()
        try:
            response = self._transport.post(
                url,
                body.encode("utf-8"),
                headers,
                self._config.request_timeout_seconds,
            )
        except OSError as exc:
            self._broadcast(url, safe_body, headers, None, time.perf_counter() - start_time)
            reason = getattr(exc, "reason", None) or exc
            raise ExternalApiError(code="http_request_failed", message=str(reason)) from exc

        self._broadcast(url, safe_body, headers, response, time.perf_counter() - start_time)
        if not 200 <= response.status_code < 300:
            raise ExternalApiError(
                code=str(response.status_code),
                message=response.reason or "Unexpected HTTP status",
            )
        return response.body

    def _broadcast(
        self,
        url: str,
        safe_body: str,
        headers: Mapping[str, str],
        response: Optional[TransportResponse],
        duration: float,
    ) -> None:
        request_data: Dict[str, object] = {
            "method": "POST",
            "uri": url,
            "user-agent": USER_AGENT,
            "headers": sanitize_headers(headers),
            "body": safe_body,
            "duration": f"{round(duration, 5)}s",
        }
        response_data: Dict[str, object] = {
            "code": response.status_code if response else None,
            "message": response.reason if response else None,
            "headers": sanitize_headers(response.headers) if response else {},
            "body": response.body if response else None,
        }
        self._audit_hook.record(request_data, response_data)


__all__ = [
    "ApiAuditHook",
    "CredentialsAlert",
    "NVPTransport",
    "NotificationVerifier",
    "ReferenceTransactionClient",
    "TransportResponse",
    "UrllibTransport",
    "sanitize_headers",
]
