"""Speech-to-text collaborators."""

from __future__ import annotations

import io
import wave
from typing import TYPE_CHECKING, NamedTuple, Protocol

import structlog
from openai import APIError, APITimeoutError, AsyncOpenAI

from voicequota.lib.exceptions import TranscriptionServiceError, TranscriptionTimeoutError

if TYPE_CHECKING:
    from typing import Any

    from voicequota.config.base import AISettings

__all__ = (
    "OpenAITranscriber",
    "Transcriber",
    "TranscriptionResult",
    "wav_duration_seconds",
)

logger = structlog.get_logger()


class TranscriptionResult(NamedTuple):
    """Text of a clip plus the duration the service measured."""

    text: str
    duration_seconds: float
    language: str | None = None


class Transcriber(Protocol):
    """Anything that turns audio bytes into text."""

    async def transcribe(self, audio: bytes, language: str, *, filename: str = "clip.wav") -> TranscriptionResult:
        """Transcribe a clip.

        Raises:
            TranscriptionServiceError: If the service fails
        """
        ...


def wav_duration_seconds(audio: bytes) -> float | None:
    """Duration of a WAV clip from its header, ``None`` for any other container."""
    try:
        with wave.open(io.BytesIO(audio), "rb") as clip:
            rate = clip.getframerate()
            if rate <= 0:
                return None
            return clip.getnframes() / rate
    except (wave.Error, EOFError):
        return None


class OpenAITranscriber:
    """Transcriber backed by the OpenAI audio transcription API."""

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1") -> None:
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: AISettings) -> OpenAITranscriber:
        client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY or None,
            base_url=settings.OPENAI_BASE_URL,
            timeout=settings.TRANSCRIPTION_TIMEOUT,
            max_retries=0,
        )
        return cls(client=client, model=settings.TRANSCRIPTION_MODEL)

    @property
    def response_format(self) -> str:
        # only whisper models report the clip duration
        return "verbose_json" if self.model.startswith("whisper") else "json"

    async def transcribe(self, audio: bytes, language: str, *, filename: str = "clip.wav") -> TranscriptionResult:
        try:
            result = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio),
                language=language,
                response_format=self.response_format,  # type: ignore[arg-type]
            )
        except APITimeoutError as exc:
            raise TranscriptionTimeoutError from exc
        except APIError as exc:
            logger.warning("Transcription request failed", error=str(exc), model=self.model)
            raise TranscriptionServiceError(detail="Failed to transcribe audio") from exc

        duration = self._measured_duration(result, audio)
        if duration is None:
            msg = "Unable to measure audio duration"
            raise TranscriptionServiceError(detail=msg)

        return TranscriptionResult(
            text=(result.text or "").strip(),
            duration_seconds=duration,
            language=getattr(result, "language", None),
        )

    @staticmethod
    def _measured_duration(result: Any, audio: bytes) -> float | None:
        duration = getattr(result, "duration", None)
        if duration is not None:
            return float(duration)
        usage = getattr(result, "usage", None)
        if usage is not None and getattr(usage, "type", None) == "duration":
            return float(usage.seconds)
        return wav_duration_seconds(audio)

    async def aclose(self) -> None:
        await self.client.close()
