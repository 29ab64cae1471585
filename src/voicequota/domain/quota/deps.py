"""Dependency providers for quota domain."""

from __future__ import annotations

from typing import Annotated

from litestar.params import Dependency

from voicequota.domain.quota.gate import QuotaGate
from voicequota.domain.quota.services import UsageLedgerService
from voicequota.lib.deps import create_service_provider

__all__ = ("provide_quota_gate", "provide_usage_ledger_service")

provide_usage_ledger_service = create_service_provider(
    UsageLedgerService,
    error_messages={
        "duplicate_key": "Usage record for this user already exists.",
        "integrity": "Usage ledger operation failed.",
    },
)


async def provide_quota_gate(
    usage_ledger_service: Annotated[UsageLedgerService, Dependency(skip_validation=True)],
) -> QuotaGate:
    """Dependency provider for QuotaGate.

    Args:
        usage_ledger_service: UsageLedgerService bound to the request's session

    Returns:
        QuotaGate reading from the request's ledger
    """
    return QuotaGate(usage_ledger_service)
