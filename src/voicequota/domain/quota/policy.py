"""Quota policy and admission rules."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from voicequota.config.base import VoiceSettings
    from voicequota.db.models import VoiceUsageRecord

__all__ = (
    "AdmissionDecision",
    "AdmissionReason",
    "QuotaPolicy",
    "billable_seconds",
    "evaluate_admission",
    "get_quota_policy",
    "remaining_seconds",
)


class AdmissionReason(str, enum.Enum):
    """Why an admission decision was negative."""

    NONE = "none"
    WINDOW_EXHAUSTED = "window_exhausted"
    REQUEST_TOO_LONG = "request_too_long"


@dataclass(frozen=True)
class QuotaPolicy:
    """Process-wide voice quota limits."""

    max_seconds_per_window: int = 1800
    window_duration_seconds: int = 86400
    max_single_request_seconds: int = 120

    def __post_init__(self) -> None:
        if self.max_seconds_per_window <= 0:
            msg = "max_seconds_per_window must be positive"
            raise ValueError(msg)
        if self.window_duration_seconds <= 0:
            msg = "window_duration_seconds must be positive"
            raise ValueError(msg)
        if self.max_single_request_seconds <= 0:
            msg = "max_single_request_seconds must be positive"
            raise ValueError(msg)

    @property
    def window_duration(self) -> timedelta:
        return timedelta(seconds=self.window_duration_seconds)

    @classmethod
    def from_settings(cls, settings: VoiceSettings) -> QuotaPolicy:
        return cls(
            max_seconds_per_window=settings.MAX_SECONDS_PER_WINDOW,
            window_duration_seconds=settings.WINDOW_DURATION_SECONDS,
            max_single_request_seconds=settings.MAX_SINGLE_REQUEST_SECONDS,
        )


class AdmissionDecision(NamedTuple):
    """Outcome of an admission check or a debit attempt."""

    allowed: bool
    remaining_seconds: int
    reason: AdmissionReason
    window_reset_at: datetime


def remaining_seconds(record: VoiceUsageRecord, policy: QuotaPolicy) -> int:
    return max(0, policy.max_seconds_per_window - record.consumed_seconds)


def evaluate_admission(
    record: VoiceUsageRecord,
    policy: QuotaPolicy,
    seconds: int,
) -> AdmissionDecision:
    """Decide whether a request of ``seconds`` fits the record under the policy.

    Pure function of its arguments. A request longer than the single-request
    cap is reported as ``REQUEST_TOO_LONG`` even when the window is also
    exhausted.
    """
    remaining = remaining_seconds(record, policy)
    if seconds > policy.max_single_request_seconds:
        reason = AdmissionReason.REQUEST_TOO_LONG
    elif seconds > remaining:
        reason = AdmissionReason.WINDOW_EXHAUSTED
    else:
        reason = AdmissionReason.NONE

    return AdmissionDecision(
        allowed=reason is AdmissionReason.NONE,
        remaining_seconds=remaining,
        reason=reason,
        window_reset_at=record.window_end,
    )


def billable_seconds(measured_seconds: float) -> int:
    """Round a measured duration up to whole seconds, at least one."""
    if measured_seconds != measured_seconds or measured_seconds < 0:  # NaN or negative
        msg = f"Invalid measured duration: {measured_seconds!r}"
        raise ValueError(msg)
    return max(1, math.ceil(measured_seconds))


@lru_cache(maxsize=1)
def get_quota_policy() -> QuotaPolicy:
    from voicequota.config import get_settings

    return QuotaPolicy.from_settings(get_settings().voice)
