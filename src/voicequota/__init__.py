"""Voice input usage metering and transcription service."""

from voicequota.__about__ import __version__

__all__ = ("__version__",)
