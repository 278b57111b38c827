# backend/rxstock/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rxstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///rxstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # |variance| strictly greater than this marks an audit item critical
    AUDIT_CRITICAL_VARIANCE_THRESHOLD = int(os.environ.get("AUDIT_CRITICAL_VARIANCE_THRESHOLD", "10"))

    # Upper bound for a single store call during draft save / completion
    AUDIT_STORE_TIMEOUT_SECONDS = float(os.environ.get("AUDIT_STORE_TIMEOUT_SECONDS", "5.0"))
    AUDIT_STORE_RETRY_ATTEMPTS = int(os.environ.get("AUDIT_STORE_RETRY_ATTEMPTS", "3"))

    # Reject a second draft/in_progress audit for the same branch
    AUDIT_SINGLE_OPEN_PER_BRANCH = _env_bool("AUDIT_SINGLE_OPEN_PER_BRANCH", True)
