from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Final

from dotenv import load_dotenv

__all__ = (
    "AISettings",
    "AppSettings",
    "DatabaseSettings",
    "LogSettings",
    "Settings",
    "VoiceSettings",
    "get_settings",
)

TRUE_VALUES: Final = {"True", "true", "1", "yes", "Y", "T"}


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value in TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return default if value in (None, "") else int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return default if value in (None, "") else float(value)


@dataclass
class DatabaseSettings:
    URL: str = field(
        default_factory=lambda: _env_str("DATABASE_URL", "sqlite+aiosqlite:///voicequota.sqlite3"))
    """SQLAlchemy database URL."""
    ECHO: bool = field(default_factory=lambda: _env_bool("DATABASE_ECHO", False))
    """Enable SQLAlchemy engine logs."""
    CREATE_ALL: bool = field(default_factory=lambda: _env_bool("DATABASE_CREATE_ALL", True))
    """Create missing tables on startup."""
    POOL_PRE_PING: bool = field(default_factory=lambda: _env_bool("DATABASE_PRE_POOL_PING", False))


@dataclass
class AppSettings:
    NAME: str = field(default_factory=lambda: _env_str("APP_NAME", "Voice Quota"))
    DEBUG: bool = field(default_factory=lambda: _env_bool("LITESTAR_DEBUG", False))
    SECRET_KEY: str = field(default_factory=lambda: _env_str("SECRET_KEY", "change-me-in-production-0123456789"))
    """Key used to sign and verify JWT bearer tokens."""
    ALLOWED_CORS_ORIGINS: list[str] = field(
        default_factory=lambda: [
            origin.strip() for origin in _env_str("ALLOWED_CORS_ORIGINS", "*").split(",") if origin.strip()
        ],
    )
    TOKEN_EXPIRATION_DAYS: int = field(default_factory=lambda: _env_int("TOKEN_EXPIRATION_DAYS", 1))


@dataclass
class AISettings:
    OPENAI_API_KEY: str = field(default_factory=lambda: _env_str("OPENAI_API_KEY", ""))
    OPENAI_BASE_URL: str | None = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL") or None)
    TRANSCRIPTION_MODEL: str = field(default_factory=lambda: _env_str("TRANSCRIPTION_MODEL", "whisper-1"))
    TRANSCRIPTION_TIMEOUT: float = field(default_factory=lambda: _env_float("TRANSCRIPTION_TIMEOUT", 30.0))
    """Seconds to wait for the transcription service before giving up."""


@dataclass
class VoiceSettings:
    MAX_SECONDS_PER_WINDOW: int = field(default_factory=lambda: _env_int("VOICE_MAX_SECONDS_PER_WINDOW", 1800))
    WINDOW_DURATION_SECONDS: int = field(default_factory=lambda: _env_int("VOICE_WINDOW_DURATION_SECONDS", 86400))
    MAX_SINGLE_REQUEST_SECONDS: int = field(
        default_factory=lambda: _env_int("VOICE_MAX_SINGLE_REQUEST_SECONDS", 120))
    MAX_UPLOAD_BYTES: int = field(default_factory=lambda: _env_int("VOICE_MAX_UPLOAD_BYTES", 25 * 1024 * 1024))
    LOW_REMAINING_MINUTES: int = field(default_factory=lambda: _env_int("VOICE_LOW_REMAINING_MINUTES", 30))
    """Below this many remaining minutes the transcribe response carries a warning."""


@dataclass
class LogSettings:
    LEVEL: int = field(default_factory=lambda: _env_int("LOG_LEVEL", 20))
    SQLALCHEMY_LEVEL: int = field(default_factory=lambda: _env_int("SQLALCHEMY_LOG_LEVEL", 30))


@dataclass
class Settings:
    app: AppSettings = field(default_factory=AppSettings)
    db: DatabaseSettings = field(default_factory=DatabaseSettings)
    ai: AISettings = field(default_factory=AISettings)
    voice: VoiceSettings = field(default_factory=VoiceSettings)
    log: LogSettings = field(default_factory=LogSettings)

    @classmethod
    def from_env(cls, dotenv_filename: str = ".env") -> Settings:
        env_file = os.getenv("ENV_FILE", dotenv_filename)
        if os.path.isfile(env_file):
            load_dotenv(env_file, override=False)
        return Settings()


@lru_cache(maxsize=1, typed=True)
def get_settings() -> Settings:
    return Settings.from_env()
