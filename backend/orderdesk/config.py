# backend/orderdesk/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty program
    LOYALTY_PAYMENT_METHOD = "fidelidade"
    LOYALTY_REDEEM_COST = int(os.environ.get("LOYALTY_REDEEM_COST", "9"))
    # Disable when a database trigger already credits points on delivery
    LOYALTY_ACCRUE_ON_DELIVERY = os.environ.get("LOYALTY_ACCRUE_ON_DELIVERY", "true").lower() == "true"

    # Channels whose immediate orders must land on an open cash register
    TILL_REQUIRED_CHANNELS = _env_list("TILL_REQUIRED_CHANNELS", "pos,kiosk")

    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "PED")

    # Retry/timeout policy for transactional steps
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.1"))
    DB_RETRY_DEADLINE_SECONDS = float(os.environ.get("DB_RETRY_DEADLINE_SECONDS", "5.0"))

    # Optional realtime fan-out; in-process subscribers always receive events
    REDIS_URL = os.environ.get("REDIS_URL")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )
