"""Transcription request orchestration."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from voicequota.domain.quota.policy import AdmissionDecision, billable_seconds
from voicequota.domain.voice.languages import is_supported, transcription_language
from voicequota.domain.voice.transcription import wav_duration_seconds
from voicequota.lib.exceptions import (
    InvalidRequestError,
    StorageUnavailableError,
    TranscriptionServiceError,
    TranscriptionTimeoutError,
)

if TYPE_CHECKING:
    from voicequota.db import models as m
    from voicequota.domain.quota.gate import QuotaGate
    from voicequota.domain.quota.services import UsageLedgerService
    from voicequota.domain.voice.transcription import Transcriber

__all__ = (
    "ACCOUNTING_LOSS_WARNING",
    "TranscriptionOutcome",
    "TranscriptionRequest",
    "TranscriptionRequestHandler",
)

logger = structlog.get_logger()

ACCOUNTING_LOSS_WARNING = "Your voice usage could not be recorded. The remaining quota shown may be out of date."


@dataclass
class TranscriptionRequest:
    """One authenticated transcription request."""

    user_id: str
    audio: bytes
    language: str
    claimed_seconds: float | None = None
    filename: str = "clip.wav"


@dataclass
class TranscriptionOutcome:
    """Result of a request that got past pre-flight admission.

    ``admitted`` is False when the pre-flight check denied the request; in
    that case ``text`` is empty and no transcription or debit happened.
    """

    admitted: bool
    decision: AdmissionDecision
    record: m.VoiceUsageRecord | None
    text: str = ""
    language: str | None = None
    billed_seconds: int = 0
    over_quota: bool = False
    accounting_lost: bool = False


class TranscriptionRequestHandler:
    """Runs one transcription request end to end.

    validate -> pre-flight admission -> transcription -> debit. Exactly one
    debit is attempted per successful transcription and none otherwise.
    """

    def __init__(
        self,
        quota_gate: QuotaGate,
        ledger: UsageLedgerService,
        transcriber: Transcriber,
        *,
        timeout: float = 30.0,
        max_upload_bytes: int | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            quota_gate: Pre-flight admission check
            ledger: Usage ledger used for the post-hoc debit
            transcriber: Speech-to-text collaborator
            timeout: Seconds to wait for the transcriber
            max_upload_bytes: Largest accepted clip, ``None`` for no limit
        """
        self.quota_gate = quota_gate
        self.ledger = ledger
        self.transcriber = transcriber
        self.timeout = timeout
        self.max_upload_bytes = max_upload_bytes

    def validate(self, request: TranscriptionRequest) -> None:
        """Reject requests that can never succeed.

        Raises:
            InvalidRequestError: On empty or oversized audio, or an unsupported language
        """
        if not request.audio:
            raise InvalidRequestError(detail="No audio recorded")
        if self.max_upload_bytes is not None and len(request.audio) > self.max_upload_bytes:
            raise InvalidRequestError(detail="Audio clip is too large")
        if not is_supported(request.language):
            raise InvalidRequestError(detail=f"Unsupported language: {request.language}")

    @staticmethod
    def estimated_seconds(claimed_seconds: float | None) -> int:
        """Client-claimed duration as whole seconds, at least one."""
        if claimed_seconds is None or not math.isfinite(claimed_seconds) or claimed_seconds <= 0:
            return 1
        return max(1, math.ceil(claimed_seconds))

    def preflight_seconds(self, request: TranscriptionRequest) -> int:
        """Seconds to check admission with: the claim, or the clip header when it says more."""
        estimate = self.estimated_seconds(request.claimed_seconds)
        measured = wav_duration_seconds(request.audio)
        if measured is not None and measured > estimate:
            return math.ceil(measured)
        return estimate

    async def handle(self, request: TranscriptionRequest) -> TranscriptionOutcome:
        """Process a transcription request.

        Args:
            request: The validated-or-not request

        Returns:
            TranscriptionOutcome; check ``admitted`` before reading ``text``

        Raises:
            InvalidRequestError: If validation fails
            StorageUnavailableError: If the pre-flight check cannot read the ledger
            TranscriptionServiceError: If transcription fails or times out
        """
        self.validate(request)

        estimate = self.preflight_seconds(request)
        record, decision = await self.quota_gate.admit(request.user_id, estimate)
        if not decision.allowed:
            return TranscriptionOutcome(admitted=False, decision=decision, record=record)

        try:
            async with asyncio.timeout(self.timeout):
                result = await self.transcriber.transcribe(
                    request.audio,
                    transcription_language(request.language),
                    filename=request.filename,
                )
        except TimeoutError as exc:
            logger.warning("Transcription timed out", user_id=request.user_id, timeout=self.timeout)
            raise TranscriptionTimeoutError from exc
        except TranscriptionServiceError:
            logger.warning("Transcription failed", user_id=request.user_id, language=request.language)
            raise

        billed = billable_seconds(result.duration_seconds)
        outcome = TranscriptionOutcome(
            admitted=True,
            decision=decision,
            record=None,
            text=result.text,
            language=request.language,
            billed_seconds=billed,
        )

        try:
            outcome.decision = await self.ledger.try_debit(request.user_id, billed)
        except StorageUnavailableError:
            # the user already has the transcript; the debit is lost, not the work
            logger.error(
                "voice_usage.accounting_loss",
                user_id=request.user_id,
                billed_seconds=billed,
            )
            outcome.accounting_lost = True
            return outcome

        if not outcome.decision.allowed:
            logger.warning(
                "voice_usage.overage",
                user_id=request.user_id,
                billed_seconds=billed,
                remaining_seconds=outcome.decision.remaining_seconds,
            )
            outcome.over_quota = True
            try:
                await self.ledger.exhaust_window(request.user_id, outcome.decision.window_reset_at)
            except StorageUnavailableError:
                logger.error("voice_usage.accounting_loss", user_id=request.user_id, billed_seconds=billed)
                outcome.accounting_lost = True
            else:
                outcome.decision = outcome.decision._replace(remaining_seconds=0)

        outcome.record = await self._refreshed_record(request.user_id)
        return outcome

    async def _refreshed_record(self, user_id: str) -> m.VoiceUsageRecord | None:
        try:
            return await self.ledger.get_snapshot(user_id)
        except StorageUnavailableError:
            logger.warning("Could not refresh usage snapshot", user_id=user_id)
            return None
