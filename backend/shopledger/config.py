# backend/shopledger/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///shopledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Ledger transactions: bounded retry on serialization failures, then Conflict
    LEDGER_RETRY_ATTEMPTS = _int_env("LEDGER_RETRY_ATTEMPTS", 3)
    LEDGER_RETRY_BACKOFF = _float_env("LEDGER_RETRY_BACKOFF", 0.05)

    # PostgreSQL: SET LOCAL lock_timeout / statement_timeout per ledger transaction
    LEDGER_LOCK_TIMEOUT_MS = _int_env("LEDGER_LOCK_TIMEOUT_MS", 2000)
    LEDGER_STATEMENT_TIMEOUT_MS = _int_env("LEDGER_STATEMENT_TIMEOUT_MS", 10000)

    # SQLite: seconds a writer waits on BEGIN IMMEDIATE before "database is locked"
    LEDGER_SQLITE_BUSY_TIMEOUT = _float_env("LEDGER_SQLITE_BUSY_TIMEOUT", 5.0)

    LOW_STOCK_THRESHOLD = _int_env("LOW_STOCK_THRESHOLD", 10)
