from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voicequota.domain.quota.policy import AdmissionReason, QuotaPolicy
from voicequota.domain.quota.services import UsageLedgerService
from voicequota.lib.exceptions import StorageUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

pytestmark = pytest.mark.anyio

POLICY = QuotaPolicy(max_seconds_per_window=1800, window_duration_seconds=86400, max_single_request_seconds=120)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def sessionmaker(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.sqlite3'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(UUIDAuditBase.registry.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
async def session(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as session:
        yield session


@pytest.fixture()
def ledger(session: AsyncSession, clock: FakeClock) -> UsageLedgerService:
    return UsageLedgerService(session=session, policy=POLICY, clock=clock)


async def test_snapshot_of_unknown_user_is_a_fresh_window(ledger: UsageLedgerService, clock: FakeClock) -> None:
    record = await ledger.get_snapshot("nobody")

    assert record.user_id == "nobody"
    assert record.consumed_seconds == 0
    assert record.request_count == 0
    assert record.window_start == clock.now
    assert record.window_end == clock.now + timedelta(days=1)
    assert await ledger.count() == 0


async def test_debits_until_the_window_is_exhausted(ledger: UsageLedgerService) -> None:
    first = await ledger.try_debit("alice", 1790)
    assert first.allowed
    assert first.remaining_seconds == 10

    second = await ledger.try_debit("alice", 5)
    assert second.allowed
    assert second.remaining_seconds == 5
    assert second.reason is AdmissionReason.NONE

    third = await ledger.try_debit("alice", 10)
    assert not third.allowed
    assert third.reason is AdmissionReason.WINDOW_EXHAUSTED
    assert third.remaining_seconds == 5

    record = await ledger.get_snapshot("alice")
    assert record.consumed_seconds == 1795
    assert record.request_count == 2


async def test_debit_filling_the_window_exactly_is_allowed(ledger: UsageLedgerService) -> None:
    decision = await ledger.try_debit("alice", 1800)

    assert decision.allowed
    assert decision.remaining_seconds == 0


@pytest.mark.parametrize("seconds", [0, -5])
async def test_debit_must_be_positive(ledger: UsageLedgerService, seconds: int) -> None:
    with pytest.raises(ValueError, match="positive"):
        await ledger.try_debit("alice", seconds)


async def test_users_are_accounted_independently(ledger: UsageLedgerService) -> None:
    await ledger.try_debit("alice", 1800)

    decision = await ledger.try_debit("bob", 60)

    assert decision.allowed
    assert (await ledger.get_snapshot("alice")).consumed_seconds == 1800
    assert (await ledger.get_snapshot("bob")).consumed_seconds == 60


async def test_expired_window_is_rotated_once(ledger: UsageLedgerService, clock: FakeClock) -> None:
    await ledger.try_debit("alice", 1200)
    first_window_end = (await ledger.get_snapshot("alice")).window_end

    clock.advance(days=1, seconds=1)
    rotated = await ledger.get_snapshot("alice")
    assert rotated.consumed_seconds == 0
    assert rotated.request_count == 0
    assert rotated.window_start == clock.now
    assert rotated.window_end == clock.now + timedelta(days=1)
    assert rotated.window_end > first_window_end

    clock.advance(seconds=30)
    again = await ledger.get_snapshot("alice")
    assert again.window_end == rotated.window_end
    assert again.window_start == rotated.window_start


async def test_concurrent_rotations_converge(
    sessionmaker: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> None:
    async with sessionmaker() as setup_session:
        await UsageLedgerService(session=setup_session, policy=POLICY, clock=clock).try_debit("alice", 600)

    clock.advance(days=2)

    async def snapshot() -> datetime:
        async with sessionmaker() as db_session:
            record = await UsageLedgerService(session=db_session, policy=POLICY, clock=clock).get_snapshot("alice")
            return record.window_end

    window_ends = await asyncio.gather(snapshot(), snapshot(), snapshot())

    assert len(set(window_ends)) == 1


async def test_debit_after_expiry_starts_a_new_window(ledger: UsageLedgerService, clock: FakeClock) -> None:
    await ledger.try_debit("alice", 1800)
    assert not (await ledger.try_debit("alice", 1)).allowed

    clock.advance(days=1)
    decision = await ledger.try_debit("alice", 30)

    assert decision.allowed
    assert decision.remaining_seconds == 1770
    assert decision.window_reset_at == clock.now + timedelta(days=1)


async def test_concurrent_debits_never_overspend(
    sessionmaker: async_sessionmaker[AsyncSession],
    clock: FakeClock,
) -> None:
    async with sessionmaker() as setup_session:
        await UsageLedgerService(session=setup_session, policy=POLICY, clock=clock).try_debit("alice", 1790)

    async def debit() -> bool:
        async with sessionmaker() as db_session:
            decision = await UsageLedgerService(session=db_session, policy=POLICY, clock=clock).try_debit("alice", 8)
            return decision.allowed

    results = await asyncio.gather(debit(), debit(), debit())

    assert sorted(results) == [False, False, True]
    async with sessionmaker() as check_session:
        record = await UsageLedgerService(session=check_session, policy=POLICY, clock=clock).get_snapshot("alice")
    assert record.consumed_seconds == 1798
    assert record.request_count == 2


async def test_conditional_debit_refuses_a_stale_window(ledger: UsageLedgerService, clock: FakeClock) -> None:
    await ledger.try_debit("alice", 10)
    stale_window_end = (await ledger.get_snapshot("alice")).window_end
    clock.advance(days=1)
    await ledger.get_snapshot("alice")

    committed = await ledger._conditional_debit("alice", 5, stale_window_end)

    assert not committed
    assert (await ledger.get_snapshot("alice")).consumed_seconds == 0


async def test_exhaust_window_fills_the_remaining_quota(ledger: UsageLedgerService) -> None:
    await ledger.try_debit("alice", 1700)
    refused = await ledger.try_debit("alice", 600)
    assert not refused.allowed

    record = await ledger.exhaust_window("alice", refused.window_reset_at)

    assert record.consumed_seconds == 1800
    assert record.request_count == 2
    again = await ledger.exhaust_window("alice", refused.window_reset_at)
    assert again.request_count == 2


async def test_exhaust_window_leaves_a_rotated_window_alone(ledger: UsageLedgerService, clock: FakeClock) -> None:
    await ledger.try_debit("alice", 1700)
    stale_window_end = (await ledger.get_snapshot("alice")).window_end
    clock.advance(days=1)
    await ledger.get_snapshot("alice")

    record = await ledger.exhaust_window("alice", stale_window_end)

    assert record.consumed_seconds == 0
    assert record.request_count == 0


async def test_storage_failure_is_reported_as_unavailable(
    ledger: UsageLedgerService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def unavailable(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT 1", {}, OSError("database is unreachable"))

    monkeypatch.setattr(ledger.db_session, "scalar", unavailable)

    with pytest.raises(StorageUnavailableError):
        await ledger.get_snapshot("alice")
    with pytest.raises(StorageUnavailableError):
        await ledger.try_debit("alice", 5)
