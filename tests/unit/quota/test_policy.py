from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from voicequota.db import models as m
from voicequota.domain.quota.policy import (
    AdmissionReason,
    QuotaPolicy,
    billable_seconds,
    evaluate_admission,
    remaining_seconds,
)
from voicequota.domain.quota.schemas import build_usage_response, epoch_millis

WINDOW_END = datetime(2024, 5, 2, 9, 0, tzinfo=UTC)


def make_record(consumed: int, requests: int = 0) -> m.VoiceUsageRecord:
    return m.VoiceUsageRecord(
        user_id="alice",
        window_start=WINDOW_END - timedelta(days=1),
        window_end=WINDOW_END,
        consumed_seconds=consumed,
        request_count=requests,
    )


@pytest.fixture()
def policy() -> QuotaPolicy:
    return QuotaPolicy(max_seconds_per_window=1800, window_duration_seconds=86400, max_single_request_seconds=120)


def test_admits_request_that_fits(policy: QuotaPolicy) -> None:
    decision = evaluate_admission(make_record(1000), policy, 60)

    assert decision.allowed
    assert decision.reason is AdmissionReason.NONE
    assert decision.remaining_seconds == 800
    assert decision.window_reset_at == WINDOW_END


def test_request_fitting_exactly_is_admitted(policy: QuotaPolicy) -> None:
    assert evaluate_admission(make_record(1740), policy, 60).allowed


def test_denies_when_window_exhausted(policy: QuotaPolicy) -> None:
    decision = evaluate_admission(make_record(1795), policy, 10)

    assert not decision.allowed
    assert decision.reason is AdmissionReason.WINDOW_EXHAUSTED
    assert decision.remaining_seconds == 5


def test_request_too_long_takes_precedence(policy: QuotaPolicy) -> None:
    decision = evaluate_admission(make_record(1800), policy, 121)

    assert not decision.allowed
    assert decision.reason is AdmissionReason.REQUEST_TOO_LONG
    assert decision.remaining_seconds == 0


def test_evaluation_is_deterministic(policy: QuotaPolicy) -> None:
    record = make_record(900, requests=4)

    decisions = {evaluate_admission(record, policy, 30) for _ in range(5)}

    assert len(decisions) == 1
    assert record.consumed_seconds == 900


def test_remaining_never_negative(policy: QuotaPolicy) -> None:
    assert remaining_seconds(make_record(2000), policy) == 0


@pytest.mark.parametrize(
    ("measured", "billed"),
    [(0.0, 1), (0.2, 1), (1.0, 1), (4.2, 5), (59.999, 60)],
)
def test_billable_seconds_round_up(measured: float, billed: int) -> None:
    assert billable_seconds(measured) == billed


@pytest.mark.parametrize("measured", [-1.0, math.nan])
def test_billable_seconds_rejects_invalid(measured: float) -> None:
    with pytest.raises(ValueError, match="Invalid measured duration"):
        billable_seconds(measured)


def test_policy_rejects_non_positive_limits() -> None:
    with pytest.raises(ValueError, match="max_seconds_per_window"):
        QuotaPolicy(max_seconds_per_window=0)


def test_usage_response_rendering(policy: QuotaPolicy) -> None:
    record = make_record(1080, requests=3)

    response = build_usage_response(record, policy, evaluate_admission(record, policy, 1))

    assert response.usage.minutes == 18.0
    assert response.usage.requests == 3
    assert response.usage.percent_used == 60.0
    assert response.limits.max_minutes == 30.0
    assert response.limits.remaining_minutes == 12
    assert response.limits.allowed
    assert response.limits.reason is None
    assert response.resets_at == epoch_millis(WINDOW_END)
    assert response.model_dump(by_alias=True)["limits"]["remainingMinutes"] == 12


def test_usage_response_for_exhausted_window(policy: QuotaPolicy) -> None:
    record = make_record(1800, requests=9)

    response = build_usage_response(record, policy, evaluate_admission(record, policy, 1))

    assert response.usage.percent_used == 100.0
    assert not response.limits.allowed
    assert response.limits.reason == "Voice input limit reached"
