# backend/repairpos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/repairpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///repairpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # When False, a negative increment may not drive a user-visible location below zero.
    # System-use-only locations are bookkeeping markers and are never checked.
    ALLOW_NEGATIVE_INVENTORY = _env_flag("ALLOW_NEGATIVE_INVENTORY", False)

    # Seed values for `flask system init`
    DEFAULT_CURRENCY_NAME = os.environ.get("DEFAULT_CURRENCY_NAME", "US")
    DEFAULT_CURRENCY_CODE = os.environ.get("DEFAULT_CURRENCY_CODE", "USD")
    DEFAULT_TAX_CODE = os.environ.get("DEFAULT_TAX_CODE", "NO-TAX")
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "0.0000")
