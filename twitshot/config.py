from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["trace", "debug", "info", "warn", "error"]
BrowserEngine = Literal["chromium", "firefox", "webkit"]

_FALSY = ("false", "f", "0", "no")

_REPO_ROOT = Path(__file__).resolve().parents[1]
_ENV_FILE = _REPO_ROOT / ".env"


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = Field(8080, ge=0, le=65535)
    log_level: LogLevel | None = None
    trust_proxy: int = Field(1, ge=0)
    application_info: str = "twitshot <https://github.com/allypost/twitter-screenshotter>"
    enable_raw_screenshots: bool = True
    environment: str = Field(
        "development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    browser: BrowserEngine = "chromium"

    redis_url: str | None = None

    bsky_service_url: str = "https://public.api.bsky.app"
    bsky_account_identifier: str | None = None
    bsky_account_password: str | None = None
    bsky_refresh_token: str | None = None

    # Env vars are injected directly in production; .env is optional
    model_config = SettingsConfigDict(
        env_file=_ENV_FILE if _ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("enable_raw_screenshots", mode="before")
    @classmethod
    def _parse_flag(cls, value: object) -> bool:
        if isinstance(value, bool):
            return value
        if value is None:
            return True
        return str(value).strip().lower() not in _FALSY

    @field_validator("redis_url", "bsky_account_identifier", "bsky_account_password", "bsky_refresh_token", mode="before")
    @classmethod
    def _blank_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("redis_url", "bsky_service_url")
    @classmethod
    def _require_url(cls, value: str | None) -> str | None:
        if value is not None and "://" not in value:
            raise ValueError(f"{value!r} is not a URL")
        return value

    @property
    def is_dev(self) -> bool:
        return self.environment.strip().lower() != "production"

    @property
    def effective_log_level(self) -> LogLevel:
        if self.log_level:
            return self.log_level
        return "debug" if self.is_dev else "info"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def clear_console() -> None:
    if os.isatty(1):
        print("\033[2J\033[H", end="", flush=True)
