# backend/tillpoint/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3 unless overridden
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///tillpoint.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Busy timeout so concurrent terminals wait on the SQLite write lock
    # instead of failing immediately.
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": {"timeout": int(os.environ.get("SQLITE_BUSY_TIMEOUT", "30"))}}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else {}
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Attempts for run_with_retry on lock contention / stale rows
    TILLPOINT_RETRY_ATTEMPTS = int(os.environ.get("TILLPOINT_RETRY_ATTEMPTS", "5"))

    # Days a store may keep trading after its subscription lapses
    TILLPOINT_SUBSCRIPTION_GRACE_DAYS = int(os.environ.get("TILLPOINT_SUBSCRIPTION_GRACE_DAYS", "7"))
