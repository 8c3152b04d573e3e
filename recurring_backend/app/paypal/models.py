"""Domain models for PayPal recurring-payment reconciliation."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator


NOT_AVAILABLE = "N/A"

PROFILE_ID_META_KEY = "_billing_profile_id"
CANCELLED_PROFILE_ID_META_KEY = "_cancelled_billing_profile_id"
PAYMENT_LOCK_META_KEY = "_payment_lock_acquired_at"


class ProfileKind(str, Enum):
    """Kinds of recurring-billing authorization a subscription can use."""

    STANDARD_RECURRING = "standard_recurring"
    REFERENCE_AGREEMENT = "reference_agreement"
    UNKNOWN = "unknown"


class ProfileFormat(str, Enum):
    """Whether a profile identifier still uses a supported format."""

    CURRENT = "current"
    LEGACY = "legacy"


class TransactionStatus(str, Enum):
    """Normalized processor payment status."""

    COMPLETED = "Completed"
    PROCESSED = "Processed"
    IN_PROGRESS = "In-Progress"
    PENDING = "Pending"
    DENIED = "Denied"
    UNKNOWN = "Unknown"


APPROVED_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.PROCESSED, TransactionStatus.IN_PROGRESS}
)


class PaymentType(str, Enum):
    """Funding type reported alongside a payment."""

    NONE = "none"
    ECHECK = "echeck"
    INSTANT = "instant"


class FraudFilterType(str, Enum):
    """Fraud management filter families returned by the processor."""

    PENDING = "PENDING"
    DENY = "DENY"


class OrderStatus(str, Enum):
    """Order statuses this core reads or writes on the host order record."""

    PENDING = "pending"
    PROCESSING = "processing"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


PAID_ORDER_STATUSES = frozenset({OrderStatus.PROCESSING.value, OrderStatus.COMPLETED.value})


class SubscriptionStatus(str, Enum):
    """Subscription statuses relevant to agreement cancellation."""

    ACTIVE = "active"
    ON_HOLD = "on-hold"
    PENDING_CANCEL = "pending-cancel"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SWITCHED = "switched"


ENDED_SUBSCRIPTION_STATUSES = frozenset(
    {
        SubscriptionStatus.PENDING_CANCEL.value,
        SubscriptionStatus.CANCELLED.value,
        SubscriptionStatus.EXPIRED.value,
        SubscriptionStatus.SWITCHED.value,
        "trash",
    }
)


class BillingProfile(BaseModel):
    """Classified billing profile identifier stored against a subscription."""

    id: str = ""
    kind: ProfileKind = ProfileKind.UNKNOWN
    format_version: ProfileFormat = Field(default=ProfileFormat.CURRENT, alias="formatVersion")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_manual(self) -> bool:
        """``True`` when no automatic billing authorization exists."""
        return self.kind == ProfileKind.UNKNOWN

    @property
    def is_legacy(self) -> bool:
        return self.format_version == ProfileFormat.LEGACY


class FraudFilter(BaseModel):
    """Processor risk signal attached to a held or denied transaction."""

    id: str
    name: str

    model_config = ConfigDict(frozen=True)


class TransactionOutcome(BaseModel):
    """Normalized result of a charge request or payment notification."""

    status_code: TransactionStatus = TransactionStatus.UNKNOWN
    raw_status: str = NOT_AVAILABLE
    transaction_id: Optional[str] = None
    pending_reason: Optional[str] = None
    payment_type: PaymentType = PaymentType.NONE
    expected_clear_date: Optional[str] = None
    fraud_filters: List[FraudFilter] = Field(default_factory=list)
    api_error_code: Optional[str] = None
    api_error_message: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def approved(self) -> bool:
        return self.status_code in APPROVED_STATUSES

    @property
    def held(self) -> bool:
        return self.status_code == TransactionStatus.PENDING

    @property
    def has_api_error(self) -> bool:
        return self.api_error_code is not None

    @property
    def status_message(self) -> str:
        """Human readable summary used in order notes.

        Held transactions surface the pending reason, eChecks the expected
        clearing date. Fraud filters are appended in both cases.
        """
        message = ""
        if self.held:
            message = self.pending_reason or NOT_AVAILABLE
        elif self.payment_type == PaymentType.ECHECK:
            message = f"expected clearing date {_format_clear_date(self.expected_clear_date)}"

        for fraud_filter in self.fraud_filters:
            message += f" {fraud_filter.name}: {fraud_filter.id}"
        return message


class BillingAgreementResult(BaseModel):
    """Outcome of a ``CreateBillingAgreement`` call."""

    billing_agreement_id: Optional[str] = None
    api_error_code: Optional[str] = None
    api_error_message: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def has_api_error(self) -> bool:
        return self.api_error_code is not None


class PaymentLock(BaseModel):
    """Soft lock placed on an initial order while the customer redirect settles."""

    order_id: str
    acquired_at: datetime
    ttl_seconds: int = Field(default=180, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("acquired_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.acquired_at).total_seconds()

    def is_active(self, now: datetime) -> bool:
        return self.age_seconds(now) < self.ttl_seconds


class CapabilityCacheEntry(BaseModel):
    """Cached answer to "does this account support reference transactions"."""

    credential_fingerprint: str
    enabled: bool
    cached_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return now >= self.cached_at + timedelta(seconds=ttl_seconds)


class WebhookEvent(BaseModel):
    """Inbound asynchronous notification, never persisted verbatim."""

    transaction_type: str
    fields: Dict[str, str] = Field(default_factory=dict)
    correlation_token: Optional[str] = None
    raw_body: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_fields(cls, fields: Dict[str, str], raw_body: Optional[str] = None) -> "WebhookEvent":
        return cls(
            transaction_type=(fields.get("txn_type") or "").strip().lower(),
            fields=dict(fields),
            correlation_token=fields.get("custom") or None,
            raw_body=raw_body,
        )

    def postback_body(self) -> str:
        """Form body echoed back to PayPal for verification, original field order kept."""

        body = self.raw_body if self.raw_body is not None else urlencode(self.fields)
        return f"cmd=_notify-validate&{body}" if body else "cmd=_notify-validate"

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.fields.get(key)
        return value if value not in (None, "") else default

    @property
    def is_test(self) -> bool:
        return self.get("test_ipn") == "1"


def to_amount(value: object) -> Decimal:
    """Coerce numeric input to a two-decimal :class:`~decimal.Decimal`."""
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _format_clear_date(raw: Optional[str]) -> str:
    if not raw:
        return NOT_AVAILABLE
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    return parsed.strftime("%B %d, %Y").replace(" 0", " ")
