# backend/stockledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound a transaction waits on a stock row lock before LockTimeoutError
    STOCK_LOCK_TIMEOUT_MS = int(os.environ.get("STOCK_LOCK_TIMEOUT_MS", "5000"))

    # Deadlock / stale-row retries at the use-case boundary
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCK_RETRY_BACKOFF", "0.1"))

    # Inventory adjustments may push a level below zero only when enabled
    ALLOW_NEGATIVE_ADJUSTMENTS = _env_bool("ALLOW_NEGATIVE_ADJUSTMENTS", False)

    EXPIRY_WARNING_DAYS = int(os.environ.get("EXPIRY_WARNING_DAYS", "30"))
    EXPIRY_CRITICAL_DAYS = int(os.environ.get("EXPIRY_CRITICAL_DAYS", "7"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
