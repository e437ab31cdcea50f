"""
Hearth Kiosk — Centralized configuration.

Loads all settings from .env and validates them once at start-up.
Every other module reads its defaults from the `settings` singleton, but
components also take explicit arguments so they can be built without it.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

# Load .env from project root (two levels up from hearth/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite (local tasks, stats, rewards, tokens, sync blob)
    DATABASE_PATH: str = "data/hearth.db"

    # Google OAuth (server-side code exchange + refresh)
    GOOGLE_CLIENT_SECRETS_PATH: str = "client_secret.json"
    GOOGLE_REDIRECT_URI: str = ""  # empty → first localhost:5173 URI in the secrets file

    # When set, token refresh goes through GET {AUTH_BACKEND_URL}/auth/refresh/{userId}
    # instead of refreshing in-process.
    AUTH_BACKEND_URL: str = ""

    # Token / provider behaviour
    TOKEN_SAFETY_MARGIN_SECONDS: int = 60
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_RETRY_DELAY_SECONDS: float = 1.0
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Google Photos Picker
    PICKER_POLL_INTERVAL_SECONDS: float = 3.0
    PICKER_TIMEOUT_SECONDS: float = 600.0
    # Finished picker sessions stay queryable this long
    PICKER_RETENTION_SECONDS: float = 300.0

    # Downloaded photos and uploaded frames (frames/ inside this directory)
    PHOTO_STORAGE_DIR: str = "data/storage"
    MAX_CONCURRENT_DOWNLOADS: int = 3
    PHOTO_DOWNLOAD_TIMEOUT_SECONDS: float = 60.0

    # Weather (Open-Meteo)
    WEATHER_CACHE_TTL_SECONDS: int = 900

    # Default aggregation window around today
    CALENDAR_LOOKBACK_MONTHS: int = 6
    CALENDAR_LOOKAHEAD_MONTHS: int = 12

    # HTTP server
    CORS_ORIGINS: list[str] = ["*"]
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [o.strip() for o in v.split(",") if o.strip()]
        return ["*"]

    @field_validator("PROVIDER_MAX_ATTEMPTS")
    @classmethod
    def at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            raise ValueError("PROVIDER_MAX_ATTEMPTS must be >= 1")
        return v

    @field_validator("MAX_CONCURRENT_DOWNLOADS")
    @classmethod
    def at_least_one_download(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_CONCURRENT_DOWNLOADS must be >= 1")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()


def _load_settings() -> Settings:
    """Load settings from environment, exiting on malformed values."""
    try:
        return Settings(
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/hearth.db"),
            GOOGLE_CLIENT_SECRETS_PATH=os.getenv("GOOGLE_CLIENT_SECRETS_PATH", "client_secret.json"),
            GOOGLE_REDIRECT_URI=os.getenv("GOOGLE_REDIRECT_URI", ""),
            AUTH_BACKEND_URL=os.getenv("AUTH_BACKEND_URL", ""),
            TOKEN_SAFETY_MARGIN_SECONDS=os.getenv("TOKEN_SAFETY_MARGIN_SECONDS", "60"),
            PROVIDER_MAX_ATTEMPTS=os.getenv("PROVIDER_MAX_ATTEMPTS", "3"),
            PROVIDER_RETRY_DELAY_SECONDS=os.getenv("PROVIDER_RETRY_DELAY_SECONDS", "1.0"),
            HTTP_TIMEOUT_SECONDS=os.getenv("HTTP_TIMEOUT_SECONDS", "10"),
            PICKER_POLL_INTERVAL_SECONDS=os.getenv("PICKER_POLL_INTERVAL_SECONDS", "3"),
            PICKER_TIMEOUT_SECONDS=os.getenv("PICKER_TIMEOUT_SECONDS", "600"),
            PICKER_RETENTION_SECONDS=os.getenv("PICKER_RETENTION_SECONDS", "300"),
            PHOTO_STORAGE_DIR=os.getenv("PHOTO_STORAGE_DIR", "data/storage"),
            MAX_CONCURRENT_DOWNLOADS=os.getenv("MAX_CONCURRENT_DOWNLOADS", "3"),
            PHOTO_DOWNLOAD_TIMEOUT_SECONDS=os.getenv("PHOTO_DOWNLOAD_TIMEOUT_SECONDS", "60"),
            WEATHER_CACHE_TTL_SECONDS=os.getenv("WEATHER_CACHE_TTL_SECONDS", "900"),
            CALENDAR_LOOKBACK_MONTHS=os.getenv("CALENDAR_LOOKBACK_MONTHS", "6"),
            CALENDAR_LOOKAHEAD_MONTHS=os.getenv("CALENDAR_LOOKAHEAD_MONTHS", "12"),
            CORS_ORIGINS=os.getenv("CORS_ORIGINS", "*"),
            HOST=os.getenv("HOST", "0.0.0.0"),
            PORT=os.getenv("PORT", "3001"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env:\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton, imported by other modules as:
#   from hearth.config import settings
settings = _load_settings()
