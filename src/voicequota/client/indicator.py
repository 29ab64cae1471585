"""Usage indicator: derives display state from the latest usage snapshot.

The indicator never estimates usage itself. Everything it shows is a pure
function of the last snapshot the server returned and the current time.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

import httpx
import structlog

from voicequota.client.api import VoiceQuotaAPIError

if TYPE_CHECKING:
    from collections.abc import Callable

    from voicequota.client.api import VoiceQuotaClient
    from voicequota.domain.quota.schemas import AIUsageResponse

__all__ = (
    "ColorTier",
    "WINDOW_NOT_STARTED",
    "UsageIndicator",
    "color_tier",
    "is_input_disabled",
    "percent_remaining",
    "time_until_reset",
)

logger = structlog.get_logger()

ALERT_PERCENT_REMAINING = 10.0
WARNING_PERCENT_REMAINING = 30.0
REFRESH_INTERVAL_SECONDS = 60.0
WINDOW_NOT_STARTED = "Window starts with your first recording"


class ColorTier(str, Enum):
    NOMINAL = "nominal"
    WARNING = "warning"
    ALERT = "alert"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def percent_remaining(snapshot: AIUsageResponse) -> float:
    return max(0.0, 100.0 - snapshot.usage.percent_used)


def color_tier(snapshot: AIUsageResponse) -> ColorTier:
    if not snapshot.limits.allowed:
        return ColorTier.ALERT
    remaining = percent_remaining(snapshot)
    if remaining <= ALERT_PERCENT_REMAINING:
        return ColorTier.ALERT
    if remaining <= WARNING_PERCENT_REMAINING:
        return ColorTier.WARNING
    return ColorTier.NOMINAL


def is_input_disabled(snapshot: AIUsageResponse) -> bool:
    return not snapshot.limits.allowed


def time_until_reset(resets_at: int, now: datetime | None = None) -> str:
    """Format the time left until ``resets_at`` (epoch milliseconds).

    Returns ``"{h}h {m}m"`` or ``"{m}m"``, and ``"Resetting..."`` once the
    reset time has passed.
    """
    now = now or _utcnow()
    left_ms = resets_at - int(now.timestamp() * 1000)
    if left_ms <= 0:
        return "Resetting..."
    hours, minutes = divmod(left_ms // 60_000, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class UsageIndicator:
    """Keeps the last-known-good usage snapshot and renders it."""

    def __init__(
        self,
        api: VoiceQuotaClient,
        *,
        interval: float = REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.api = api
        self.interval = interval
        self.clock = clock or _utcnow
        self.snapshot: AIUsageResponse | None = None
        self.last_error: str | None = None

    @property
    def color(self) -> ColorTier | None:
        return color_tier(self.snapshot) if self.snapshot is not None else None

    @property
    def disabled(self) -> bool:
        return self.snapshot is not None and is_input_disabled(self.snapshot)

    def update(self, snapshot: AIUsageResponse | None) -> None:
        """Adopt a snapshot delivered some other way, e.g. with a transcription."""
        if snapshot is not None:
            self.snapshot = snapshot
            self.last_error = None

    async def refresh(self) -> AIUsageResponse | None:
        """Fetch a new snapshot, keeping the previous one if the fetch fails."""
        try:
            snapshot = await self.api.get_usage()
        except (httpx.HTTPError, VoiceQuotaAPIError) as exc:
            self.last_error = str(exc) or type(exc).__name__
            logger.warning("Failed to fetch voice usage", error=self.last_error)
            return self.snapshot
        self.update(snapshot)
        return self.snapshot

    async def run(self) -> None:
        """Refresh on a fixed interval until cancelled."""
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def render(self) -> str:
        if self.snapshot is None:
            return "Voice usage unavailable"
        limits = self.snapshot.limits
        if not limits.allowed:
            return f"Voice input limit reached, resets in {time_until_reset(self.snapshot.resets_at, self.clock())}"
        return f"{limits.remaining_minutes}m remaining"

    def describe(self) -> list[str]:
        """Detail lines for a tooltip or ``--verbose`` output."""
        if self.snapshot is None:
            return ["Voice usage unavailable"]
        usage, limits = self.snapshot.usage, self.snapshot.limits
        lines = [
            f"Used {usage.minutes:g} of {limits.max_minutes:g} minutes ({usage.percent_used:g}%)",
            f"{limits.remaining_minutes}m remaining",
            f"{usage.requests} requests",
        ]
        if usage.requests == 0:
            # the reset time is not final until the first debit
            lines.append(WINDOW_NOT_STARTED)
        else:
            reset = time_until_reset(self.snapshot.resets_at, self.clock())
            lines.append(reset if reset == "Resetting..." else f"Resets in {reset}")
        if limits.reason:
            lines.append(limits.reason)
        return lines
