from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///./pennywise.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    default_currency: str = "USD"
    forecast_months: int = 3
    history_months: int = 6
    log_level: str = DEFAULT_LOG_LEVEL


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
        default_currency=_env_currency("DEFAULT_CURRENCY", "USD"),
        forecast_months=_env_positive_int("FORECAST_MONTHS", 3),
        history_months=_env_positive_int("HISTORY_MONTHS", 6),
        log_level=_env_log_level("LOG_LEVEL", DEFAULT_LOG_LEVEL),
    )


def _env_currency(name: str, fallback: str) -> str:
    raw = os.getenv(name, fallback)
    normalized = raw.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        return fallback
    return normalized


def _env_positive_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    return value if value > 0 else fallback


def _env_log_level(name: str, fallback: str) -> str:
    normalized = os.getenv(name, fallback).strip().upper()
    if normalized not in LOG_LEVELS:
        return fallback
    return normalized
