"""Application wiring for the PayPal reconciliation service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict

from recurring_backend.app_context import get_order_store, get_subscription_repository

from ..paypal import (
    ApiAuditHook,
    CredentialsAlert,
    ProcessorConfig,
    ReconciliationService,
    build_reconciliation_service,
    load_processor_config,
)
from ..paypal.repository import PostgresCapabilityStore


logger = logging.getLogger("paypal")


class LoggingApiAuditHook(ApiAuditHook):
    """Audit hook that writes sanitized request/response pairs to the application logger."""

    def record(self, request_data: Dict[str, object], response_data: Dict[str, object]) -> None:
        logger.info(
            "PayPal API request %s %s code=%s duration=%s",
            request_data.get("method"),
            request_data.get("uri"),
            response_data.get("code"),
            request_data.get("duration"),
        )
        logger.debug("PayPal API request body: %s", request_data.get("body"))
        logger.debug(
            "PayPal API response message=%s body=%s",
            response_data.get("message"),
            response_data.get("body"),
        )


class LoggingCredentialsAlert(CredentialsAlert):
    """Placeholder admin notice that logs until a dashboard banner exists."""

    def flag_invalid_credentials(self, fingerprint: str) -> None:
        logger.warning(
            "PayPal rejected the configured API credentials; check username, password and signature",
            extra={"credential_fingerprint": fingerprint},
        )


@lru_cache(maxsize=1)
def get_processor_config() -> ProcessorConfig:
    return load_processor_config()


@lru_cache(maxsize=1)
def get_reconciliation_service() -> ReconciliationService:
    config = get_processor_config()
    service = build_reconciliation_service(
        config,
        orders=get_order_store(),
        subscriptions=get_subscription_repository(),
        capability_store=PostgresCapabilityStore(),
        audit_hook=LoggingApiAuditHook(),
        credentials_alert=LoggingCredentialsAlert(),
    )
    return service


__all__ = [
    "LoggingApiAuditHook",
    "LoggingCredentialsAlert",
    "get_processor_config",
    "get_reconciliation_service",
]
