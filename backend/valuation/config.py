# backend/valuation/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/valuation.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///valuation.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Currency precision for revenue, prices and reported money (2 -> cents)
    CURRENCY_MINOR_UNITS = int(os.environ.get("CURRENCY_MINOR_UNITS", "2"))

    # Restock cost changes below both thresholds do not emit a price change event
    PRICE_CHANGE_ABS_THRESHOLD = os.environ.get("PRICE_CHANGE_ABS_THRESHOLD", "0.01")
    PRICE_CHANGE_REL_THRESHOLD = os.environ.get("PRICE_CHANGE_REL_THRESHOLD", "0.005")

    # Profitability / restocking
    PROFITABILITY_PERIOD_DAYS = int(os.environ.get("PROFITABILITY_PERIOD_DAYS", "30"))
    TREND_THRESHOLD = os.environ.get("TREND_THRESHOLD", "0.10")
    RESTOCK_HORIZON_DAYS = int(os.environ.get("RESTOCK_HORIZON_DAYS", "14"))

    # Batch jobs (one per store)
    BATCH_MAX_WORKERS = int(os.environ.get("BATCH_MAX_WORKERS", "4"))
    BATCH_TIMEOUT_SECONDS = int(os.environ.get("BATCH_TIMEOUT_SECONDS", "300"))

    # Request-path contention handling
    MUTATION_RETRY_ATTEMPTS = int(os.environ.get("MUTATION_RETRY_ATTEMPTS", "3"))
    MUTATION_RETRY_BACKOFF = float(os.environ.get("MUTATION_RETRY_BACKOFF", "0.1"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    BATCH_MAX_WORKERS = 1
    MUTATION_RETRY_BACKOFF = 0.0
