"""PayPal reference-transaction reconciliation domain package."""

from .capability import CapabilityCache, CapabilityStore, InMemoryCapabilityStore
from .client import (
    ApiAuditHook,
    CredentialsAlert,
    NotificationVerifier,
    NVPTransport,
    ReferenceTransactionClient,
    TransportResponse,
)
from .config import ApiCredentials, ProcessorConfig, load_processor_config
from .exceptions import ExternalApiError, ReconciliationError, StateConflictError, ValidationError
from .locks import PaymentLockGuard
from .models import (
    BillingAgreementResult,
    BillingProfile,
    CapabilityCacheEntry,
    FraudFilter,
    OrderStatus,
    PaymentLock,
    PaymentType,
    ProfileFormat,
    ProfileKind,
    SubscriptionStatus,
    TransactionOutcome,
    TransactionStatus,
    WebhookEvent,
)
from .orchestrator import ChargeResult, HardError, PaymentSuccess, ReconciliationOrchestrator, SoftDecline
from .parser import NVPResponse, parse_transaction_outcome
from .profiles import BillingProfileResolver, ProfileSubscriptionIndex
from .records import OrderRecord, OrderStore, SubscriptionRecord, SubscriptionRepository
from .service import ReconciliationService, build_reconciliation_service
from .webhooks import PaymentStatus, TransactionType, WebhookHandler, WebhookResult

__all__ = [
    "ApiAuditHook",
    "ApiCredentials",
    "BillingAgreementResult",
    "BillingProfile",
    "BillingProfileResolver",
    "CapabilityCache",
    "CapabilityCacheEntry",
    "CapabilityStore",
    "ChargeResult",
    "CredentialsAlert",
    "ExternalApiError",
    "FraudFilter",
    "HardError",
    "InMemoryCapabilityStore",
    "NVPResponse",
    "NVPTransport",
    "NotificationVerifier",
    "OrderRecord",
    "OrderStatus",
    "OrderStore",
    "PaymentLock",
    "PaymentLockGuard",
    "PaymentStatus",
    "PaymentSuccess",
    "PaymentType",
    "ProcessorConfig",
    "ProfileFormat",
    "ProfileKind",
    "ProfileSubscriptionIndex",
    "ReconciliationError",
    "ReconciliationOrchestrator",
    "ReconciliationService",
    "ReferenceTransactionClient",
    "SoftDecline",
    "StateConflictError",
    "SubscriptionRecord",
    "SubscriptionRepository",
    "SubscriptionStatus",
    "TransactionOutcome",
    "TransactionStatus",
    "TransactionType",
    "TransportResponse",
    "ValidationError",
    "WebhookEvent",
    "WebhookHandler",
    "WebhookResult",
    "build_reconciliation_service",
    "load_processor_config",
    "parse_transaction_outcome",
]
