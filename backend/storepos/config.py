# backend/storepos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storepos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storepos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pricing
    DEFAULT_VAT_RATE = float(os.environ.get("DEFAULT_VAT_RATE", "12"))
    SENIOR_PWD_DISCOUNT_RATE = float(os.environ.get("SENIOR_PWD_DISCOUNT_RATE", "20"))

    # Analytics cache and refresh
    ANALYTICS_CACHE_TTL_SECONDS = int(os.environ.get("ANALYTICS_CACHE_TTL_SECONDS", "300"))
    ANALYTICS_REFRESH_INTERVAL_SECONDS = int(os.environ.get("ANALYTICS_REFRESH_INTERVAL_SECONDS", "600"))
    ANALYTICS_BACKGROUND_REFRESH = _env_bool("ANALYTICS_BACKGROUND_REFRESH", False)
    ANALYTICS_ASYNC_REFRESH = _env_bool("ANALYTICS_ASYNC_REFRESH", True)

    # Transaction numbering
    TXN_NUMBER_MAX_ATTEMPTS = int(os.environ.get("TXN_NUMBER_MAX_ATTEMPTS", "5"))

    # Identity headers set by the upstream gateway (X-User-Id, X-User-Name, X-User-Role)
    IDENTITY_HEADER_PREFIX = os.environ.get("IDENTITY_HEADER_PREFIX", "X-User")

    # Server-sent events keepalive
    STREAM_KEEPALIVE_SECONDS = int(os.environ.get("STREAM_KEEPALIVE_SECONDS", "15"))
