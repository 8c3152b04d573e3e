import logging
import math
import os
from typing import Any

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI

from recurring_backend import app_context
from recurring_backend.app.routes.paypal import router as paypal_router


load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "recurring_db"),
    user=os.getenv("DB_USER", "recurring_user"),
    password=os.getenv("DB_PASSWORD", "recurring_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)


def get_conn():
    return psycopg2.connect(**DB_CFG)


def configure_host(*, order_store: Any, subscription_repository: Any) -> None:
    """Called by the host store once its order and subscription lookups exist."""

    app_context.configure(
        get_conn=get_conn,
        order_store=order_store,
        subscription_repository=subscription_repository,
    )


app = FastAPI(title="Recurring Payment Reconciler")

app.include_router(paypal_router)


# run: uvicorn recurring_backend.main:app --host 127.0.0.1 --port 8000 --reload
