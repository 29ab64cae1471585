"""Pre-flight admission checks for voice transcription requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from voicequota.domain.quota.policy import AdmissionDecision, QuotaPolicy, evaluate_admission

if TYPE_CHECKING:
    from voicequota.db import models as m
    from voicequota.domain.quota.services import UsageLedgerService

__all__ = ("QuotaGate",)

logger = structlog.get_logger()


class QuotaGate:
    """Advisory admission control in front of the transcription service.

    The gate never debits. A request it admits can still be refused by the
    post-hoc :meth:`UsageLedgerService.try_debit` if a concurrent request used
    up the quota in between.
    """

    def __init__(self, ledger: UsageLedgerService, policy: QuotaPolicy | None = None) -> None:
        """Initialize the quota gate.

        Args:
            ledger: Usage ledger to read snapshots from
            policy: Quota limits; defaults to the ledger's policy
        """
        self.ledger = ledger
        self.policy = policy or ledger.policy

    async def check_admission(self, user_id: str, estimated_seconds: int) -> AdmissionDecision:
        """Check whether a request of ``estimated_seconds`` may proceed.

        Args:
            user_id: Opaque identity of the user making the request
            estimated_seconds: Client-estimated duration of the clip

        Returns:
            AdmissionDecision, ``allowed=False`` when the clip is too long or
            does not fit the remaining quota

        Raises:
            StorageUnavailableError: If the ledger cannot be read. Callers
                must treat this as a denial.
        """
        _, decision = await self.admit(user_id, estimated_seconds)
        return decision

    async def admit(self, user_id: str, estimated_seconds: int) -> tuple[m.VoiceUsageRecord, AdmissionDecision]:
        """Like :meth:`check_admission`, also returning the record the decision was made on."""
        record = await self.ledger.get_snapshot(user_id)
        decision = evaluate_admission(record, self.policy, estimated_seconds)
        if not decision.allowed:
            logger.info(
                "voice_usage.admission_denied",
                user_id=user_id,
                estimated_seconds=estimated_seconds,
                remaining_seconds=decision.remaining_seconds,
                reason=decision.reason.value,
            )
        return record, decision

    async def get_usage(self, user_id: str) -> tuple[m.VoiceUsageRecord, AdmissionDecision]:
        """Get the current record and whether a minimal request would be admitted."""
        record = await self.ledger.get_snapshot(user_id)
        return record, evaluate_admission(record, self.policy, 1)
