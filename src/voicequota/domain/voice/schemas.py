"""Schemas for voice domain."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from litestar.datastructures import UploadFile  # noqa: TC002
from pydantic import Field

from voicequota.domain.quota.policy import evaluate_admission, remaining_seconds
from voicequota.domain.quota.schemas import REASON_MESSAGES, AIUsageResponse, build_usage_response, epoch_millis
from voicequota.domain.voice.services import ACCOUNTING_LOSS_WARNING
from voicequota.lib.schema import PydanticBaseModel

if TYPE_CHECKING:
    from voicequota.db import models as m
    from voicequota.domain.quota.policy import QuotaPolicy
    from voicequota.domain.voice.services import TranscriptionOutcome

__all__ = (
    "AdmissionDeniedResponse",
    "TranscribeForm",
    "TranscriptionResponse",
    "build_admission_denied_response",
    "build_transcription_response",
)

OVER_QUOTA_WARNING = "Voice input limit reached. Your next recording will be blocked until usage resets."


@dataclass
class TranscribeForm:
    """Multipart body of a transcription request."""

    audio: UploadFile | None = None
    language: str = "en"
    duration: float | None = None
    """Client-measured clip length in seconds. Advisory only."""


class TranscriptionResponse(PydanticBaseModel):
    """Response schema for a completed transcription."""

    text: str = Field(..., description="Transcribed text")
    language: str | None = Field(None, description="Language code the clip was transcribed as")
    remaining: int | None = Field(None, description="Whole voice minutes left in the window")
    over_quota: bool = Field(default=False, description="The clip did not fit the remaining quota")
    warning: str | None = Field(None, description="Soft warning to show the user")
    error: str | None = Field(None, description="Error message, if any")
    usage: AIUsageResponse | None = Field(None, description="Usage snapshot after this request")


class AdmissionDeniedResponse(PydanticBaseModel):
    """Response schema for a request refused before transcription."""

    error: str = Field(..., description="Human-readable reason")
    reason: str = Field(..., description="Machine-readable reason code")
    remaining_seconds: int = Field(..., description="Voice seconds left in the window")
    resets_at: int = Field(..., description="When usage resets, epoch milliseconds")
    usage: AIUsageResponse | None = Field(None, description="Current usage snapshot")


def _usage_for(record: m.VoiceUsageRecord | None, policy: QuotaPolicy) -> AIUsageResponse | None:
    if record is None:
        return None
    return build_usage_response(record, policy, evaluate_admission(record, policy, 1))


def build_transcription_response(
    outcome: TranscriptionOutcome,
    policy: QuotaPolicy,
    low_remaining_minutes: int,
) -> TranscriptionResponse:
    """Render a completed transcription, choosing at most one warning."""
    remaining: int | None = None
    warning: str | None = None
    if outcome.record is not None:
        remaining = remaining_seconds(outcome.record, policy) // 60

    if outcome.accounting_lost:
        warning = ACCOUNTING_LOSS_WARNING
    elif outcome.over_quota:
        warning = OVER_QUOTA_WARNING
    elif remaining is not None and remaining < low_remaining_minutes:
        warning = f"{remaining} minutes of voice input remaining"

    return TranscriptionResponse(
        text=outcome.text,
        language=outcome.language,
        remaining=remaining,
        over_quota=outcome.over_quota,
        warning=warning,
        usage=_usage_for(outcome.record, policy),
    )


def build_admission_denied_response(outcome: TranscriptionOutcome, policy: QuotaPolicy) -> AdmissionDeniedResponse:
    decision = outcome.decision
    return AdmissionDeniedResponse(
        error=REASON_MESSAGES.get(decision.reason, "Voice input is not available"),
        reason=decision.reason.value,
        remaining_seconds=decision.remaining_seconds,
        resets_at=epoch_millis(decision.window_reset_at),
        usage=_usage_for(outcome.record, policy),
    )
