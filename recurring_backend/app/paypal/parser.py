"""Parsing of name-value-pair processor responses into normalized outcomes.

The parser never raises for missing fields. Absent values surface as the
``"N/A"`` sentinel or ``None`` and validation is left to the orchestrator.
"""
from __future__ import annotations

from typing import Dict, List, Optional
from urllib.parse import parse_qsl

from .models import (
    NOT_AVAILABLE,
    BillingAgreementResult,
    FraudFilter,
    FraudFilterType,
    PaymentType,
    TransactionOutcome,
    TransactionStatus,
)

# Single payment request; index is always 0.
PARALLEL_PAYMENT_PREFIX = "PAYMENTINFO_0_"

SUCCESS_ACKS = frozenset({"Success", "SuccessWithWarning"})
FRAUD_PENDING_ERROR_CODE = "11610"
FRAUD_DENY_ERROR_CODE = "11611"
CREDENTIAL_ERROR_CODES = frozenset({"10002", "10008"})
CREDENTIAL_ERROR_MESSAGES = frozenset({"Username/Password is incorrect", "Security header is not valid"})
USER_SAFE_ERROR_CODES = frozenset({"10445", "10474", "12126", "13113", "13122", "13112"})

_MAX_INDEXED_FIELDS = 10

_STATUS_BY_RAW = {status.value.lower(): status for status in TransactionStatus}


def parse_nvp(body: str) -> Dict[str, str]:
    """Decode a percent-encoded ``KEY=value&...`` body, dropping empty values."""
    return {key: value for key, value in parse_qsl(body or "", keep_blank_values=False)}


def classify_status(raw_status: Optional[str]) -> TransactionStatus:
    if not raw_status:
        return TransactionStatus.UNKNOWN
    return _STATUS_BY_RAW.get(raw_status.strip().lower(), TransactionStatus.UNKNOWN)


def classify_payment_type(raw_type: Optional[str]) -> PaymentType:
    if not raw_type:
        return PaymentType.NONE
    try:
        return PaymentType(raw_type.strip().lower())
    except ValueError:
        return PaymentType.NONE


class NVPResponse:
    """Read-only view over a decoded processor response."""

    def __init__(self, parameters: Dict[str, str]) -> None:
        self._parameters = dict(parameters)

    @classmethod
    def from_body(cls, body: str) -> "NVPResponse":
        return cls(parse_nvp(body))

    @property
    def parameters(self) -> Dict[str, str]:
        return dict(self._parameters)

    def has(self, name: str) -> bool:
        return bool(self._parameters.get(name))

    def get(self, name: str) -> Optional[str]:
        return self._parameters.get(name) if self.has(name) else None

    @property
    def has_api_error(self) -> bool:
        # A missing ACK is treated as a failure.
        return self.get("ACK") not in SUCCESS_ACKS

    @property
    def has_credentials_error(self) -> bool:
        if not self.has_api_error:
            return False
        for index in range(_MAX_INDEXED_FIELDS):
            code_matches = self.get(f"L_ERRORCODE{index}") in CREDENTIAL_ERROR_CODES
            message_matches = self.get(f"L_LONGMESSAGE{index}") in CREDENTIAL_ERROR_MESSAGES
            if code_matches and message_matches:
                return True
        return False

    @property
    def error_codes(self) -> List[str]:
        return [
            self._parameters[f"L_ERRORCODE{index}"]
            for index in range(_MAX_INDEXED_FIELDS)
            if self.has(f"L_ERRORCODE{index}")
        ]

    @property
    def api_error_code(self) -> str:
        codes = self.error_codes
        return ", ".join(codes).strip() if codes else NOT_AVAILABLE

    @property
    def api_error_message(self) -> str:
        messages: List[str] = []
        for index in range(_MAX_INDEXED_FIELDS):
            short_message = self.get(f"L_SHORTMESSAGE{index}")
            if not short_message:
                continue
            severity = self.get(f"L_SEVERITYCODE{index}") or "Error"
            long_message = self.get(f"L_LONGMESSAGE{index}") or "Unknown error"
            message = f"{severity}: {short_message} - {long_message}"
            param_id = self.get(f"L_ERRORPARAMID{index}")
            param_value = self.get(f"L_ERRORPARAMVALUE{index}")
            if param_id and param_value:
                message += f" ({param_id} - {param_value})"
            messages.append(message)
        return ", ".join(messages).strip() if messages else NOT_AVAILABLE

    @property
    def user_message(self) -> Optional[str]:
        """Error text that is safe to show a customer, if any."""
        if self.api_error_code in USER_SAFE_ERROR_CODES:
            return self.api_error_message
        return None


def extract_fraud_filters(response: NVPResponse) -> List[FraudFilter]:
    """Return fraud filters for held-for-review or filter-denied responses.

    Plain declines carry no filter data, so a response without one of the two
    fraud error codes yields an empty list. The codes may appear at any error
    index, alongside unrelated warnings.
    """

    error_codes = response.error_codes
    if FRAUD_DENY_ERROR_CODE in error_codes:
        filter_type = FraudFilterType.DENY
    elif FRAUD_PENDING_ERROR_CODE in error_codes:
        filter_type = FraudFilterType.PENDING
    else:
        return []

    filters: List[FraudFilter] = []
    for index in range(_MAX_INDEXED_FIELDS):
        filter_id = response.get(f"L_FMF{filter_type.value}ID{index}")
        filter_name = response.get(f"L_FMF{filter_type.value}NAME{index}")
        if filter_id and filter_name:
            filters.append(FraudFilter(id=filter_id, name=filter_name))
    return filters


def parse_transaction_outcome(
    body: str,
    *,
    prefix: str = PARALLEL_PAYMENT_PREFIX,
) -> TransactionOutcome:
    """Parse a payment response body into a :class:`TransactionOutcome`."""

    return outcome_from_response(NVPResponse.from_body(body), prefix=prefix)


def outcome_from_response(
    response: NVPResponse,
    *,
    prefix: str = PARALLEL_PAYMENT_PREFIX,
) -> TransactionOutcome:
    raw_status = response.get(f"{prefix}PAYMENTSTATUS") or NOT_AVAILABLE
    has_error = response.has_api_error
    return TransactionOutcome(
        status_code=classify_status(raw_status),
        raw_status=raw_status,
        transaction_id=response.get(f"{prefix}TRANSACTIONID"),
        pending_reason=response.get(f"{prefix}PENDINGREASON") or NOT_AVAILABLE,
        payment_type=classify_payment_type(response.get(f"{prefix}PAYMENTTYPE")),
        expected_clear_date=response.get(f"{prefix}EXPECTEDECHECKCLEARDATE"),
        fraud_filters=extract_fraud_filters(response),
        api_error_code=response.api_error_code if has_error else None,
        api_error_message=response.api_error_message if has_error else None,
    )


def parse_billing_agreement(body: str) -> BillingAgreementResult:
    response = NVPResponse.from_body(body)
    has_error = response.has_api_error
    return BillingAgreementResult(
        billing_agreement_id=response.get("BILLINGAGREEMENTID"),
        api_error_code=response.api_error_code if has_error else None,
        api_error_message=response.api_error_message if has_error else None,
    )


__all__ = [
    "NVPResponse",
    "PARALLEL_PAYMENT_PREFIX",
    "classify_payment_type",
    "classify_status",
    "extract_fraud_filters",
    "outcome_from_response",
    "parse_billing_agreement",
    "parse_nvp",
    "parse_transaction_outcome",
]
