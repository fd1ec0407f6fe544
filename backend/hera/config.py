# backend/hera/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///hera.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("HERA_LOG_LEVEL", "INFO")

    # Bulk attribute/metadata reads issue one query per chunk of entity ids
    ATTRIBUTE_BULK_CHUNK_SIZE = int(os.environ.get("HERA_BULK_CHUNK_SIZE", "500"))

    RETRY_ATTEMPTS = 3
    RETRY_BACKOFF_BASE = 0.1

    DEFAULT_CURRENCY = "USD"
    DEFAULT_TRANSACTION_STATUS = "pending"

    # Allowed forward transitions per transaction type; "default" applies to
    # any type without its own table.
    TRANSACTION_WORKFLOWS = {
        "default": {
            "pending": ["preparing", "processing", "cancelled"],
            "preparing": ["completed", "cancelled"],
            "processing": ["completed", "cancelled"],
            "completed": [],
            "cancelled": [],
        },
    }
