"""API routes exposing the PayPal notification listener and capability checks."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from fastapi import APIRouter, Request, Response, status
from pydantic import ValidationError as SchemaValidationError

from ..schemas.paypal import CapabilityResponse, IpnPayload
from ..services.paypal import get_reconciliation_service

logger = logging.getLogger("paypal")

router = APIRouter(prefix="/api/paypal", tags=["paypal"])


@router.post("/ipn", status_code=status.HTTP_200_OK)
async def receive_ipn(request: Request) -> Response:
    raw_body = (await request.body()).decode("utf-8", errors="replace")
    fields = dict(parse_qsl(raw_body, keep_blank_values=True))
    try:
        payload = IpnPayload.model_validate(fields)
    except SchemaValidationError:
        logger.warning("Discarding unreadable PayPal notification")
        return Response(status_code=status.HTTP_200_OK)

    service = get_reconciliation_service()
    try:
        result = service.handle_webhook(payload.to_event(raw_body=raw_body))
    except Exception:
        logger.exception("Unhandled error processing PayPal notification txn_type=%s", payload.txn_type)
    else:
        logger.debug("PayPal notification txn_type=%s result=%s", payload.txn_type, result.value)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/capability", response_model=CapabilityResponse)
def get_capability() -> CapabilityResponse:
    service = get_reconciliation_service()
    entry = service.capability_cache.cached_entry(service.config.credentials)
    return CapabilityResponse.from_entry(entry)


@router.post("/capability/recheck", response_model=CapabilityResponse)
def recheck_capability() -> CapabilityResponse:
    service = get_reconciliation_service()
    enabled = service.recheck_capability()
    return CapabilityResponse(enabled=enabled, checked_at=datetime.now(timezone.utc))
