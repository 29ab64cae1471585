from __future__ import annotations

from voicequota.config import app, base
from voicequota.config.base import get_settings

__all__ = (
    "app",
    "base",
    "get_settings",
)
