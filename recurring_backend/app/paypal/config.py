"""Processor configuration helpers."""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

PRODUCTION_ENDPOINT = "https://api-3t.paypal.com/nvp"
SANDBOX_ENDPOINT = "https://api-3t.sandbox.paypal.com/nvp"
PRODUCTION_IPN_ENDPOINT = "https://ipnpb.paypal.com/cgi-bin/webscr"
SANDBOX_IPN_ENDPOINT = "https://ipnpb.sandbox.paypal.com/cgi-bin/webscr"


@dataclass(frozen=True)
class ApiCredentials:
    """Signature credentials for one processor environment."""

    username: str
    password: str
    signature: str
    environment: str = "production"

    @property
    def are_set(self) -> bool:
        return bool(self.username and self.password and self.signature)

    @property
    def fingerprint(self) -> str:
        """Stable identifier for capability caching that does not expose the username."""

        raw = f"{self.environment}:{self.username}".encode("utf-8")
        return hashlib.sha256(raw).hexdigest()


@dataclass(frozen=True)
class ProcessorConfig:
    """Configuration injected into every reconciliation component."""

    gateway_id: str
    sandbox: bool
    live_credentials: ApiCredentials
    sandbox_credentials: ApiCredentials
    api_version: str
    request_timeout_seconds: float
    invoice_prefix: str
    notify_url: str
    callback_url: str
    receiver_email: str
    brand_name: str
    default_currency: str
    payment_lock_seconds: int
    capability_cache_ttl_seconds: int
    held_order_status: str
    legacy_profile_prefixes: Tuple[str, ...]

    @property
    def environment(self) -> str:
        return "sandbox" if self.sandbox else "production"

    @property
    def endpoint(self) -> str:
        return SANDBOX_ENDPOINT if self.sandbox else PRODUCTION_ENDPOINT

    @property
    def ipn_endpoint(self) -> str:
        return SANDBOX_IPN_ENDPOINT if self.sandbox else PRODUCTION_IPN_ENDPOINT

    @property
    def credentials(self) -> ApiCredentials:
        """Credentials for the active environment."""
        return self.sandbox_credentials if self.sandbox else self.live_credentials


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_prefixes(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    return tuple(part.strip() for part in value.split(",") if part.strip())


def load_processor_config(env: Optional[Mapping[str, str]] = None) -> ProcessorConfig:
    """Load :class:`ProcessorConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    live_credentials = ApiCredentials(
        username=env_mapping.get("PAYPAL_API_USERNAME", ""),
        password=env_mapping.get("PAYPAL_API_PASSWORD", ""),
        signature=env_mapping.get("PAYPAL_API_SIGNATURE", ""),
        environment="production",
    )
    sandbox_credentials = ApiCredentials(
        username=env_mapping.get("PAYPAL_SANDBOX_API_USERNAME", ""),
        password=env_mapping.get("PAYPAL_SANDBOX_API_PASSWORD", ""),
        signature=env_mapping.get("PAYPAL_SANDBOX_API_SIGNATURE", ""),
        environment="sandbox",
    )

    timeout = max(1.0, _to_float(env_mapping.get("PAYPAL_REQUEST_TIMEOUT"), default=60.0))
    lock_seconds = max(0, _to_int(env_mapping.get("PAYMENT_LOCK_SECONDS"), default=180))
    cache_ttl = max(60, _to_int(env_mapping.get("CAPABILITY_CACHE_TTL_SECONDS"), default=7 * 24 * 60 * 60))

    return ProcessorConfig(
        gateway_id=(env_mapping.get("PAYPAL_GATEWAY_ID") or "paypal").strip(),
        sandbox=_to_bool(env_mapping.get("PAYPAL_TESTMODE"), default=False),
        live_credentials=live_credentials,
        sandbox_credentials=sandbox_credentials,
        api_version=env_mapping.get("PAYPAL_API_VERSION", "124"),
        request_timeout_seconds=timeout,
        invoice_prefix=env_mapping.get("PAYPAL_INVOICE_PREFIX", ""),
        notify_url=env_mapping.get("PAYPAL_NOTIFY_URL", "http://localhost:8000/api/paypal/ipn"),
        callback_url=env_mapping.get("PAYPAL_CALLBACK_URL", "http://localhost:8000/api/paypal/callback"),
        receiver_email=(env_mapping.get("PAYPAL_RECEIVER_EMAIL") or "").strip(),
        brand_name=env_mapping.get("PAYPAL_BRAND_NAME", ""),
        default_currency=(env_mapping.get("PAYPAL_CURRENCY") or "USD").upper(),
        payment_lock_seconds=lock_seconds,
        capability_cache_ttl_seconds=cache_ttl,
        held_order_status=(env_mapping.get("PAYPAL_HELD_ORDER_STATUS") or "on-hold").strip(),
        legacy_profile_prefixes=_to_prefixes(
            env_mapping.get("PAYPAL_LEGACY_PROFILE_PREFIXES"), default=("S-",)
        ),
    )
