"""Controllers for voice domain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import structlog
from litestar import Controller, Response, post
from litestar.di import Provide
from litestar.enums import RequestEncodingType
from litestar.params import Body, Dependency
from litestar.status_codes import HTTP_200_OK, HTTP_429_TOO_MANY_REQUESTS

from voicequota.config import get_settings
from voicequota.domain.quota.deps import provide_quota_gate, provide_usage_ledger_service
from voicequota.domain.voice import urls
from voicequota.domain.voice.deps import provide_transcriber, provide_transcription_handler
from voicequota.domain.voice.schemas import (
    TranscribeForm,
    build_admission_denied_response,
    build_transcription_response,
)
from voicequota.domain.voice.services import TranscriptionRequest

if TYPE_CHECKING:
    from voicequota.domain.accounts.guards import Identity
    from voicequota.domain.voice.services import TranscriptionRequestHandler

logger = structlog.get_logger()

__all__ = ("TranscriptionController",)

settings = get_settings()

# room for the multipart envelope around the clip
_MULTIPART_OVERHEAD_BYTES = 64 * 1024


class TranscriptionController(Controller):
    """Voice-to-text input metered by the usage quota."""

    tags = ["Voice Input"]
    dependencies = {
        "usage_ledger_service": Provide(provide_usage_ledger_service),
        "quota_gate": Provide(provide_quota_gate),
        "transcriber": Provide(provide_transcriber),
        "transcription_handler": Provide(provide_transcription_handler),
    }

    @post(
        path=urls.TRANSCRIBE,
        operation_id="Transcribe",
        status_code=HTTP_200_OK,
        request_max_body_size=settings.voice.MAX_UPLOAD_BYTES + _MULTIPART_OVERHEAD_BYTES,
    )
    async def transcribe(
        self,
        current_user: Identity,
        data: Annotated[TranscribeForm, Body(media_type=RequestEncodingType.MULTI_PART)],
        transcription_handler: Annotated["TranscriptionRequestHandler", Dependency(skip_validation=True)],
    ) -> Response:
        """Transcribe a recorded clip and debit its duration from the user's quota."""
        audio = await data.audio.read() if data.audio is not None else b""
        filename = (data.audio.filename if data.audio is not None else None) or "clip.webm"
        outcome = await transcription_handler.handle(
            TranscriptionRequest(
                user_id=current_user.id,
                audio=audio,
                language=data.language,
                claimed_seconds=data.duration,
                filename=filename,
            ),
        )
        policy = transcription_handler.quota_gate.policy

        if not outcome.admitted:
            return Response(
                content=build_admission_denied_response(outcome, policy),
                status_code=HTTP_429_TOO_MANY_REQUESTS,
            )

        return Response(
            content=build_transcription_response(outcome, policy, settings.voice.LOW_REMAINING_MINUTES),
            status_code=HTTP_200_OK,
        )
