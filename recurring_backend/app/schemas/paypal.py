"""API schemas for PayPal endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..paypal import CapabilityCacheEntry, WebhookEvent


class IpnPayload(BaseModel):
    """Subset of IPN fields consumed by the reconciliation core; the rest are carried along."""

    txn_type: str = ""
    payment_status: Optional[str] = None
    custom: Optional[str] = None
    mp_id: Optional[str] = None
    test_ipn: Optional[str] = None
    txn_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    def to_event(self, raw_body: Optional[str] = None) -> WebhookEvent:
        fields: Dict[str, str] = {
            key: str(value)
            for key, value in self.model_dump(exclude_none=True).items()
        }
        return WebhookEvent.from_fields(fields, raw_body=raw_body)


class CapabilityResponse(BaseModel):
    enabled: bool
    checked_at: Optional[datetime] = Field(alias="checkedAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entry(cls, entry: Optional[CapabilityCacheEntry]) -> "CapabilityResponse":
        if entry is None:
            return cls(enabled=False, checked_at=None)
        return cls(enabled=entry.enabled, checked_at=entry.cached_at)
