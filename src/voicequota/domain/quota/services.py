"""Usage ledger: authoritative voice-seconds accounting per user."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

import structlog
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from advanced_alchemy.service import SQLAlchemyAsyncRepositoryService
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from voicequota.db import models as m
from voicequota.domain.quota.policy import (
    AdmissionDecision,
    AdmissionReason,
    QuotaPolicy,
    get_quota_policy,
    remaining_seconds,
)
from voicequota.lib.exceptions import StorageUnavailableError
from voicequota.lib.locks import KeyedLock

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ("UsageLedgerService",)

logger = structlog.get_logger()

# Attempts at the conditional debit when a concurrent rotation moves the window
# between our read and our write.
MAX_DEBIT_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UsageLedgerService(SQLAlchemyAsyncRepositoryService[m.VoiceUsageRecord]):
    """Handles database operations for voice usage records.

    All mutations go through conditional ``UPDATE`` statements, so the
    database linearizes concurrent debits and rotations for the same user
    even across processes. The per-user lock only keeps coroutines in this
    process from racing each other into the database.
    """

    class Repository(SQLAlchemyAsyncRepository[m.VoiceUsageRecord]):
        """VoiceUsageRecord SQLAlchemy Repository."""

        model_type = m.VoiceUsageRecord

    repository_type = Repository
    match_fields = ["user_id"]

    _locks: ClassVar[KeyedLock] = KeyedLock()

    def __init__(
        self,
        session: AsyncSession,
        *,
        policy: QuotaPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(session=session, **kwargs)
        self.policy = policy or get_quota_policy()
        self.clock = clock or _utcnow

    @property
    def db_session(self) -> AsyncSession:
        return self.repository.session  # type: ignore[return-value]

    async def get_snapshot(self, user_id: str) -> m.VoiceUsageRecord:
        """Get the current usage record for a user.

        An expired record is rotated (and the rotation persisted) before it is
        returned. A user without a record gets an unsaved, empty record whose
        window starts now.

        Args:
            user_id: Opaque identity of the user

        Returns:
            VoiceUsageRecord for the current window

        Raises:
            StorageUnavailableError: If the usage storage cannot be reached
        """
        async with self._locks.hold(user_id), self._storage_errors(user_id):
            record = await self._load(user_id)
            if record is None:
                return self._fresh_record(user_id, self.clock())
            return await self._rotate_if_expired(record)

    async def try_debit(self, user_id: str, seconds: int) -> AdmissionDecision:
        """Atomically add consumed seconds if they fit the remaining quota.

        A denied debit leaves the record untouched; see ``exhaust_window`` for
        closing the window afterwards.

        Args:
            user_id: Opaque identity of the user
            seconds: Measured, billed seconds of a completed transcription

        Returns:
            AdmissionDecision describing the committed (or refused) debit

        Raises:
            StorageUnavailableError: If the usage storage cannot be reached
        """
        if seconds <= 0:
            msg = f"Debit must be positive, got {seconds}"
            raise ValueError(msg)

        async with self._locks.hold(user_id), self._storage_errors(user_id):
            record = await self._get_or_create(user_id)
            for _ in range(MAX_DEBIT_ATTEMPTS):
                record = await self._rotate_if_expired(record)
                observed_window_end = record.window_end
                committed = await self._conditional_debit(user_id, seconds, observed_window_end)
                record = await self._require(user_id)
                if committed:
                    logger.info(
                        "voice_usage.debited",
                        user_id=user_id,
                        seconds=seconds,
                        consumed_seconds=record.consumed_seconds,
                        request_count=record.request_count,
                    )
                    return AdmissionDecision(
                        allowed=True,
                        remaining_seconds=remaining_seconds(record, self.policy),
                        reason=AdmissionReason.NONE,
                        window_reset_at=record.window_end,
                    )
                if record.window_end == observed_window_end:
                    break

            logger.info(
                "voice_usage.debit_refused",
                user_id=user_id,
                seconds=seconds,
                consumed_seconds=record.consumed_seconds,
            )
            return AdmissionDecision(
                allowed=False,
                remaining_seconds=remaining_seconds(record, self.policy),
                reason=AdmissionReason.WINDOW_EXHAUSTED,
                window_reset_at=record.window_end,
            )

    async def exhaust_window(self, user_id: str, window_end: datetime) -> m.VoiceUsageRecord:
        """Bill whatever is left of a window after a refused debit.

        Used when a completed transcription did not fit the remaining quota:
        the window is filled so the next admission check is denied. Only the
        window ending at ``window_end`` is touched; a window that has rotated
        since is left alone.

        Args:
            user_id: Opaque identity of the user
            window_end: End of the window the refused debit observed

        Returns:
            VoiceUsageRecord after the update

        Raises:
            StorageUnavailableError: If the usage storage cannot be reached
        """
        limit = self.policy.max_seconds_per_window
        record_table = m.VoiceUsageRecord
        async with self._locks.hold(user_id), self._storage_errors(user_id):
            stmt = (
                update(record_table)
                .where(
                    record_table.user_id == user_id,
                    record_table.window_end == window_end,
                    record_table.consumed_seconds < limit,
                )
                .values(
                    consumed_seconds=limit,
                    request_count=record_table.request_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db_session.execute(stmt)
            await self.db_session.commit()
            record = await self._require(user_id)
            if result.rowcount == 1:  # type: ignore[attr-defined]
                logger.info("voice_usage.window_exhausted", user_id=user_id, consumed_seconds=record.consumed_seconds)
            return record

    async def _conditional_debit(self, user_id: str, seconds: int, window_end: datetime) -> bool:
        record_table = m.VoiceUsageRecord
        stmt = (
            update(record_table)
            .where(
                record_table.user_id == user_id,
                record_table.window_end == window_end,
                record_table.consumed_seconds + seconds <= self.policy.max_seconds_per_window,
            )
            .values(
                consumed_seconds=record_table.consumed_seconds + seconds,
                request_count=record_table.request_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db_session.execute(stmt)
        await self.db_session.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def _rotate_if_expired(self, record: m.VoiceUsageRecord) -> m.VoiceUsageRecord:
        now = self.clock()
        if now < record.window_end:
            return record

        # compare-and-swap on the window we observed; a concurrent rotation wins and we re-read it
        stmt = (
            update(m.VoiceUsageRecord)
            .where(
                m.VoiceUsageRecord.user_id == record.user_id,
                m.VoiceUsageRecord.window_end == record.window_end,
            )
            .values(
                window_start=now,
                window_end=now + self.policy.window_duration,
                consumed_seconds=0,
                request_count=0,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db_session.execute(stmt)
        await self.db_session.commit()
        if result.rowcount == 1:  # type: ignore[attr-defined]
            logger.info(
                "voice_usage.window_rotated",
                user_id=record.user_id,
                previous_window_end=record.window_end.isoformat(),
                previous_consumed_seconds=record.consumed_seconds,
            )
        return await self._require(record.user_id)

    async def _get_or_create(self, user_id: str) -> m.VoiceUsageRecord:
        record = await self._load(user_id)
        if record is not None:
            return record

        self.db_session.add(self._fresh_record(user_id, self.clock()))
        try:
            await self.db_session.commit()
        except SQLAlchemyIntegrityError:
            # created concurrently by another request
            await self.db_session.rollback()
        return await self._require(user_id)

    async def _load(self, user_id: str) -> m.VoiceUsageRecord | None:
        stmt = (
            select(m.VoiceUsageRecord)
            .where(m.VoiceUsageRecord.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return await self.db_session.scalar(stmt)

    async def _require(self, user_id: str) -> m.VoiceUsageRecord:
        record = await self._load(user_id)
        if record is None:
            msg = f"Usage record for user {user_id} disappeared"
            raise StorageUnavailableError(detail=msg)
        return record

    def _fresh_record(self, user_id: str, now: datetime) -> m.VoiceUsageRecord:
        return m.VoiceUsageRecord(
            user_id=user_id,
            window_start=now,
            window_end=now + self.policy.window_duration,
            consumed_seconds=0,
            request_count=0,
        )

    @asynccontextmanager
    async def _storage_errors(self, user_id: str) -> AsyncIterator[None]:
        try:
            yield
        except (DBAPIError, SQLAlchemyTimeoutError, OSError) as exc:
            logger.error(
                "voice_usage.storage_unavailable",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            try:
                await self.db_session.rollback()
            except (DBAPIError, OSError) as rollback_exc:
                logger.warning("voice_usage.rollback_failed", user_id=user_id, error=str(rollback_exc))
            raise StorageUnavailableError from exc
