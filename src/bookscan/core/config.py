"""Runtime settings read from the environment (and .env, when present)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


@dataclass
class Settings:
    google_books_api_key: str = field(
        default_factory=lambda: os.environ.get("GOOGLE_BOOKS_API_KEY", "")
    )
    ol_contact_email: str = field(
        default_factory=lambda: os.environ.get("OL_CONTACT_EMAIL", "")
    )
    provider_timeout: float = field(
        default_factory=lambda: _env_float("BOOKSCAN_PROVIDER_TIMEOUT", 8.0)
    )
    store: str = field(default_factory=lambda: os.environ.get("BOOKSCAN_STORE", "memory"))
    db_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("BOOKSCAN_DB_PATH", ".data/bookscan.db")
        )
    )
    rate_limit: int = field(default_factory=lambda: _env_int("RATE_LIMIT", 30))
    rate_limit_window: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_WINDOW", 60)
    )
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8000))
    env: str = field(default_factory=lambda: os.environ.get("ENV", "dev"))


settings = Settings()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through a level filter with timestamps."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )
