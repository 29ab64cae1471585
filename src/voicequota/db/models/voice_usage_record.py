"""Voice usage record model for quota accounting."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column


class VoiceUsageRecord(UUIDAuditBase):
    """Voice-seconds consumed by one user in the current accounting window."""

    __tablename__ = "voice_usage_record"
    __table_args__ = (
        Index("idx_voice_usage_record_window_end", "window_end"),
        {"comment": "Per-user voice input usage for the current accounting window"},
    )

    # Opaque identity reference issued by the identity provider
    user_id: Mapped[str] = mapped_column(
        String(length=255),
        nullable=False,
        unique=True,
        index=True,
    )

    window_start: Mapped[datetime] = mapped_column(
        DateTimeUTC(timezone=True),
        nullable=False,
        comment="Start of the current accounting window",
    )
    window_end: Mapped[datetime] = mapped_column(
        DateTimeUTC(timezone=True),
        nullable=False,
        comment="Point in time the usage resets",
    )

    consumed_seconds: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Billed voice seconds in this window",
    )
    request_count: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Completed transcriptions in this window",
    )
