"""Dependency providers for voice domain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from litestar.params import Dependency

from voicequota.config import get_settings
from voicequota.domain.voice.services import TranscriptionRequestHandler

if TYPE_CHECKING:
    from litestar.datastructures import State

    from voicequota.domain.quota.gate import QuotaGate
    from voicequota.domain.quota.services import UsageLedgerService
    from voicequota.domain.voice.transcription import Transcriber

__all__ = ("provide_transcriber", "provide_transcription_handler")


async def provide_transcriber(state: State) -> Transcriber:
    """Get the transcriber created at application startup.

    Args:
        state: Application state

    Returns:
        The process-wide transcriber
    """
    return state.transcriber  # type: ignore[no-any-return]


async def provide_transcription_handler(
    quota_gate: Annotated["QuotaGate", Dependency(skip_validation=True)],
    usage_ledger_service: Annotated["UsageLedgerService", Dependency(skip_validation=True)],
    transcriber: Annotated["Transcriber", Dependency(skip_validation=True)],
) -> TranscriptionRequestHandler:
    """Dependency provider for TranscriptionRequestHandler.

    Args:
        quota_gate: QuotaGate for pre-flight admission
        usage_ledger_service: UsageLedgerService for the post-hoc debit
        transcriber: Speech-to-text collaborator

    Returns:
        TranscriptionRequestHandler configured from settings
    """
    settings = get_settings()
    return TranscriptionRequestHandler(
        quota_gate=quota_gate,
        ledger=usage_ledger_service,
        transcriber=transcriber,
        timeout=settings.ai.TRANSCRIPTION_TIMEOUT,
        max_upload_bytes=settings.voice.MAX_UPLOAD_BYTES,
    )
