"""Shared application context for host-provided collaborators."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_conn: Optional[Callable[[], Any]] = None
_order_store: Optional[Any] = None
_subscription_repository: Optional[Any] = None


def configure(
    *,
    get_conn: Callable[[], Any],
    order_store: Any,
    subscription_repository: Any,
) -> None:
    """Register the host store's connection factory and order/subscription lookups."""

    global _get_conn
    global _order_store
    global _subscription_repository

    _get_conn = get_conn
    _order_store = order_store
    _subscription_repository = subscription_repository


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_conn() -> Any:
    conn_factory = _require(_get_conn, "get_conn")
    return conn_factory()


def get_order_store() -> Any:
    return _require(_order_store, "order_store")


def get_subscription_repository() -> Any:
    return _require(_subscription_repository, "subscription_repository")
