"""Client-side voice input: API access, audio capture and the usage indicator."""

from voicequota.client import api, capture, indicator

__all__ = ("api", "capture", "indicator")
