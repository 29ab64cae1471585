"""HTTP client for the voice usage and transcription endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from voicequota.domain.quota import urls as quota_urls
from voicequota.domain.quota.schemas import AIUsageResponse
from voicequota.domain.voice import urls as voice_urls
from voicequota.domain.voice.schemas import AdmissionDeniedResponse, TranscriptionResponse

if TYPE_CHECKING:
    from types import TracebackType

__all__ = (
    "DAILY_LIMIT_MESSAGE",
    "AdmissionDeniedError",
    "VoiceQuotaAPIError",
    "VoiceQuotaClient",
)

logger = structlog.get_logger()

DAILY_LIMIT_MESSAGE = "Daily voice input limit reached"


class VoiceQuotaAPIError(Exception):
    """The server answered with an error status."""

    def __init__(self, status_code: int, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.retryable = retryable


class AdmissionDeniedError(VoiceQuotaAPIError):
    """The server refused the request before transcribing it (HTTP 429)."""

    def __init__(self, message: str, denial: AdmissionDeniedResponse | None = None) -> None:
        super().__init__(httpx.codes.TOO_MANY_REQUESTS, message)
        self.denial = denial


class VoiceQuotaClient:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Usage::

        async with VoiceQuotaClient.connect("http://localhost:8000", token) as api:
            usage = await api.get_usage()
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    @classmethod
    def connect(
        cls,
        base_url: str,
        token: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> VoiceQuotaClient:
        http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )
        return cls(http)

    async def __aenter__(self) -> VoiceQuotaClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def get_usage(self) -> AIUsageResponse:
        """Fetch the current usage snapshot.

        Raises:
            VoiceQuotaAPIError: On any error status
            httpx.HTTPError: If the server cannot be reached
        """
        response = await self.http.get(quota_urls.AI_USAGE)
        self._raise_for_status(response)
        return AIUsageResponse.model_validate(response.json())

    async def transcribe(
        self,
        audio: bytes,
        language: str,
        duration: float | None = None,
        *,
        filename: str = "clip.wav",
    ) -> TranscriptionResponse:
        """Upload a clip for transcription.

        Args:
            audio: Encoded audio clip
            language: Supported language code
            duration: Client-measured clip length in seconds
            filename: Name sent with the upload; its extension tells the server the container

        Raises:
            AdmissionDeniedError: If the quota does not admit the clip
            VoiceQuotaAPIError: On any other error status
            httpx.HTTPError: If the server cannot be reached
        """
        data = {"language": language}
        if duration is not None:
            data["duration"] = f"{duration:.3f}"
        response = await self.http.post(
            voice_urls.TRANSCRIBE,
            data=data,
            files={"audio": (filename, audio, "audio/wav")},
        )
        self._raise_for_status(response)
        return TranscriptionResponse.model_validate(response.json())

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return

        payload = _json_or_empty(response)
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            denial: AdmissionDeniedResponse | None
            try:
                denial = AdmissionDeniedResponse.model_validate(payload)
            except ValidationError:
                denial = None
            raise AdmissionDeniedError(payload.get("error") or DAILY_LIMIT_MESSAGE, denial)

        message = payload.get("error") or payload.get("detail") or response.reason_phrase or "Request failed"
        logger.warning("Voice API request failed", status_code=response.status_code, error=message)
        raise VoiceQuotaAPIError(
            response.status_code,
            str(message),
            retryable=bool(payload.get("retryable", False)),
        )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
