# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Candidates tried per document number before giving up
    IDENTIFIER_RETRY_ATTEMPTS = int(os.environ.get("IDENTIFIER_RETRY_ATTEMPTS", "3"))

    # Used when a return policy has to be created from nothing
    DEFAULT_MAX_RETURN_DAYS = int(os.environ.get("DEFAULT_MAX_RETURN_DAYS", "7"))
