from typing import Literal

from pydantic import BaseModel

from voicequota.__about__ import __version__ as current_version
from voicequota.config.base import get_settings

__all__ = ("SystemHealth",)

settings = get_settings()


class SystemHealth(BaseModel):
    """Health of the service plus the quota it enforces."""

    database_status: Literal["online", "offline"]
    app: str = settings.app.NAME
    version: str = current_version
    transcription_model: str = settings.ai.TRANSCRIPTION_MODEL
    max_seconds_per_window: int = settings.voice.MAX_SECONDS_PER_WINDOW
    window_duration_seconds: int = settings.voice.WINDOW_DURATION_SECONDS
