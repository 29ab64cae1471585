"""Schemas for quota domain."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from voicequota.domain.quota.policy import AdmissionReason, remaining_seconds
from voicequota.lib.schema import PydanticBaseModel

if TYPE_CHECKING:
    from datetime import datetime

    from voicequota.db import models as m
    from voicequota.domain.quota.policy import AdmissionDecision, QuotaPolicy

__all__ = (
    "REASON_MESSAGES",
    "AIUsageResponse",
    "UsageLimits",
    "UsageTotals",
    "build_usage_response",
    "epoch_millis",
)

REASON_MESSAGES: dict[AdmissionReason, str] = {
    AdmissionReason.WINDOW_EXHAUSTED: "Voice input limit reached",
    AdmissionReason.REQUEST_TOO_LONG: "Recording is longer than the maximum allowed length",
}


class UsageTotals(PydanticBaseModel):
    """Consumption in the current window."""

    minutes: float = Field(..., description="Voice minutes used in the current window")
    requests: int = Field(..., description="Completed transcriptions in the current window")
    percent_used: float = Field(..., description="Share of the window quota used, 0-100")


class UsageLimits(PydanticBaseModel):
    """Quota limits and current admission state."""

    max_minutes: float = Field(..., description="Voice minutes allowed per window")
    remaining_minutes: int = Field(..., description="Whole voice minutes left in the window")
    allowed: bool = Field(..., description="Whether new voice input is currently admitted")
    reason: str | None = Field(None, description="Why voice input is blocked")


class AIUsageResponse(PydanticBaseModel):
    """Response schema for the voice usage snapshot."""

    usage: UsageTotals
    limits: UsageLimits
    resets_at: int = Field(..., description="When usage resets, epoch milliseconds")


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_usage_response(
    record: m.VoiceUsageRecord,
    policy: QuotaPolicy,
    decision: AdmissionDecision,
) -> AIUsageResponse:
    """Render a usage record and its admission state for the client."""
    consumed = record.consumed_seconds
    percent_used = min(100.0, round(consumed / policy.max_seconds_per_window * 100, 1))
    return AIUsageResponse(
        usage=UsageTotals(
            minutes=round(consumed / 60, 1),
            requests=record.request_count,
            percent_used=percent_used,
        ),
        limits=UsageLimits(
            max_minutes=round(policy.max_seconds_per_window / 60, 1),
            remaining_minutes=remaining_seconds(record, policy) // 60,
            allowed=decision.allowed,
            reason=REASON_MESSAGES.get(decision.reason),
        ),
        resets_at=epoch_millis(record.window_end),
    )
