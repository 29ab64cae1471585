from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voicequota.domain.quota.gate import QuotaGate
from voicequota.domain.quota.policy import AdmissionReason, QuotaPolicy
from voicequota.domain.quota.services import UsageLedgerService
from voicequota.domain.voice.schemas import OVER_QUOTA_WARNING, build_transcription_response
from voicequota.domain.voice.services import (
    ACCOUNTING_LOSS_WARNING,
    TranscriptionRequest,
    TranscriptionRequestHandler,
)
from voicequota.domain.voice.transcription import TranscriptionResult
from voicequota.lib.exceptions import (
    InvalidRequestError,
    StorageUnavailableError,
    TranscriptionServiceError,
    TranscriptionTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

pytestmark = pytest.mark.anyio

POLICY = QuotaPolicy(max_seconds_per_window=1800, window_duration_seconds=86400, max_single_request_seconds=120)


class SlowTranscriber:
    async def transcribe(self, audio: bytes, language: str, *, filename: str = "clip.wav") -> TranscriptionResult:
        await asyncio.sleep(5)
        return TranscriptionResult(text="too late", duration_seconds=1.0)


@pytest.fixture()
async def session() -> AsyncIterator[AsyncSession]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(UUIDAuditBase.registry.metadata.create_all)
    sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
    async with sessionmaker() as session:
        yield session
    await engine.dispose()


@pytest.fixture()
def ledger(session: AsyncSession) -> UsageLedgerService:
    return UsageLedgerService(session=session, policy=POLICY)


@pytest.fixture()
def handler(ledger: UsageLedgerService, transcriber: object) -> TranscriptionRequestHandler:
    return TranscriptionRequestHandler(
        quota_gate=QuotaGate(ledger),
        ledger=ledger,
        transcriber=transcriber,  # type: ignore[arg-type]
        timeout=1.0,
        max_upload_bytes=1024 * 1024,
    )


@pytest.fixture()
def clip(make_clip: Callable[..., bytes]) -> bytes:
    return make_clip(1.0)


async def test_successful_request_debits_measured_duration(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    transcriber: object,
    clip: bytes,
) -> None:
    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en", claimed_seconds=2))

    assert outcome.admitted
    assert outcome.text == "hello world"
    assert outcome.billed_seconds == 5
    assert not outcome.over_quota
    assert outcome.record is not None
    assert outcome.record.consumed_seconds == 5
    assert (await ledger.get_snapshot("alice")).request_count == 1
    assert len(transcriber.calls) == 1  # type: ignore[attr-defined]


async def test_regional_language_is_sent_as_its_transcription_language(
    handler: TranscriptionRequestHandler,
    transcriber: object,
    clip: bytes,
) -> None:
    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="bal"))

    assert outcome.language == "bal"
    assert transcriber.calls[0][1] == "fa"  # type: ignore[attr-defined]


@pytest.mark.parametrize(
    ("audio", "language", "message"),
    [
        (b"", "en", "No audio recorded"),
        (b"RIFF", "xx", "Unsupported language: xx"),
        (b"\x00" * (1024 * 1024 + 1), "en", "Audio clip is too large"),
    ],
)
async def test_invalid_requests_are_rejected_before_any_work(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    transcriber: object,
    audio: bytes,
    language: str,
    message: str,
) -> None:
    with pytest.raises(InvalidRequestError, match=message):
        await handler.handle(TranscriptionRequest(user_id="alice", audio=audio, language=language))

    assert transcriber.calls == []  # type: ignore[attr-defined]
    assert await ledger.count() == 0


async def test_preflight_denial_skips_transcription(
    handler: TranscriptionRequestHandler,
    transcriber: object,
    clip: bytes,
) -> None:
    outcome = await handler.handle(
        TranscriptionRequest(user_id="alice", audio=clip, language="en", claimed_seconds=121),
    )

    assert not outcome.admitted
    assert outcome.decision.reason is AdmissionReason.REQUEST_TOO_LONG
    assert outcome.text == ""
    assert transcriber.calls == []  # type: ignore[attr-defined]


async def test_exhausted_window_is_denied_before_transcription(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    transcriber: object,
    clip: bytes,
) -> None:
    await ledger.try_debit("alice", 1800)

    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en"))

    assert not outcome.admitted
    assert outcome.decision.reason is AdmissionReason.WINDOW_EXHAUSTED
    assert outcome.record is not None
    assert outcome.record.consumed_seconds == 1800
    assert transcriber.calls == []  # type: ignore[attr-defined]


async def test_transcription_failure_does_not_debit(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    transcriber: object,
    clip: bytes,
) -> None:
    transcriber.error = TranscriptionServiceError()  # type: ignore[attr-defined]

    with pytest.raises(TranscriptionServiceError) as exc_info:
        await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en"))

    assert exc_info.value.extra["retryable"] is True
    assert (await ledger.get_snapshot("alice")).consumed_seconds == 0


async def test_transcription_timeout_does_not_debit(ledger: UsageLedgerService, clip: bytes) -> None:
    handler = TranscriptionRequestHandler(QuotaGate(ledger), ledger, SlowTranscriber(), timeout=0.05)

    with pytest.raises(TranscriptionTimeoutError):
        await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en"))

    assert await ledger.count() == 0


async def test_post_hoc_overage_keeps_transcript_and_closes_the_window(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    transcriber: object,
    clip: bytes,
) -> None:
    await ledger.try_debit("alice", 1790)
    transcriber.duration_seconds = 20.0  # type: ignore[attr-defined]

    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en", claimed_seconds=5))

    assert outcome.admitted
    assert outcome.over_quota
    assert outcome.text == "hello world"
    assert outcome.decision.remaining_seconds == 0
    assert outcome.record is not None
    assert outcome.record.consumed_seconds == 1800
    assert outcome.record.request_count == 2

    response = build_transcription_response(outcome, POLICY, low_remaining_minutes=30)
    assert response.over_quota
    assert response.warning == OVER_QUOTA_WARNING
    assert response.remaining == 0

    following = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en", claimed_seconds=1))
    assert not following.admitted
    assert following.decision.reason is AdmissionReason.WINDOW_EXHAUSTED
    assert len(transcriber.calls) == 1  # type: ignore[attr-defined]


async def test_clip_longer_than_claimed_is_checked_by_its_header(
    handler: TranscriptionRequestHandler,
    transcriber: object,
    make_clip: Callable[..., bytes],
) -> None:
    long_clip = make_clip(130.0, sample_rate=2000)

    outcome = await handler.handle(
        TranscriptionRequest(user_id="alice", audio=long_clip, language="en", claimed_seconds=1),
    )

    assert handler.preflight_seconds(TranscriptionRequest(user_id="alice", audio=long_clip, language="en")) == 130
    assert not outcome.admitted
    assert outcome.decision.reason is AdmissionReason.REQUEST_TOO_LONG
    assert transcriber.calls == []  # type: ignore[attr-defined]


async def test_preflight_keeps_a_larger_claim(handler: TranscriptionRequestHandler, clip: bytes) -> None:
    request = TranscriptionRequest(user_id="alice", audio=clip, language="en", claimed_seconds=9.2)

    assert handler.preflight_seconds(request) == 10
    assert handler.preflight_seconds(TranscriptionRequest(user_id="alice", audio=b"webm", language="en")) == 1



async def test_debit_storage_failure_is_a_soft_warning(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    clip: bytes,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def unavailable(user_id: str, seconds: int) -> None:
        raise StorageUnavailableError

    monkeypatch.setattr(ledger, "try_debit", unavailable)

    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en"))

    assert outcome.admitted
    assert outcome.accounting_lost
    assert outcome.text == "hello world"
    response = build_transcription_response(outcome, POLICY, low_remaining_minutes=30)
    assert response.warning == ACCOUNTING_LOSS_WARNING
    assert response.text == "hello world"


async def test_low_remaining_quota_produces_warning(
    handler: TranscriptionRequestHandler,
    ledger: UsageLedgerService,
    clip: bytes,
) -> None:
    await ledger.try_debit("alice", 1000)

    outcome = await handler.handle(TranscriptionRequest(user_id="alice", audio=clip, language="en"))
    response = build_transcription_response(outcome, POLICY, low_remaining_minutes=30)

    assert response.remaining == 13
    assert response.warning == "13 minutes of voice input remaining"
    assert response.usage is not None
    assert response.usage.usage.requests == 2

