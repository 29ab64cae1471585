"""Controllers for quota domain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import structlog
from litestar import Controller, get
from litestar.di import Provide
from litestar.params import Dependency

from voicequota.domain.quota import urls
from voicequota.domain.quota.deps import provide_quota_gate, provide_usage_ledger_service
from voicequota.domain.quota.schemas import AIUsageResponse, build_usage_response

if TYPE_CHECKING:
    from voicequota.domain.accounts.guards import Identity
    from voicequota.domain.quota.gate import QuotaGate

logger = structlog.get_logger()

__all__ = ("UsageController",)


class UsageController(Controller):
    """Voice input usage for the current user."""

    tags = ["Voice Usage"]
    dependencies = {
        "usage_ledger_service": Provide(provide_usage_ledger_service),
        "quota_gate": Provide(provide_quota_gate),
    }

    @get(path=urls.AI_USAGE, operation_id="GetAIUsage")
    async def get_ai_usage(
        self,
        current_user: Identity,
        quota_gate: Annotated["QuotaGate", Dependency(skip_validation=True)],
    ) -> AIUsageResponse:
        """Get voice minutes used, remaining quota and the reset time."""
        record, decision = await quota_gate.get_usage(current_user.id)
        return build_usage_response(record, quota_gate.policy, decision)
