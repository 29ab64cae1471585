from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from litestar import Controller, MediaType, Response, get
from litestar.status_codes import HTTP_200_OK, HTTP_503_SERVICE_UNAVAILABLE
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from voicequota.domain.system import urls
from voicequota.domain.system.schemas import SystemHealth

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

__all__ = ("SystemController",)


class SystemController(Controller):
    tags = ["System"]

    @get(
        operation_id="SystemHealth",
        path=urls.SYSTEM_HEALTH,
        media_type=MediaType.JSON,
        cache=False,
    )
    async def check_system_health(self, db_session: AsyncSession) -> Response[SystemHealth]:
        """Check database available and returns app config info."""
        try:
            await db_session.execute(text("select 1"))
            db_ping = True
        except (SQLAlchemyError, OSError) as exc:
            await logger.awarning("Database health check failed", error=str(exc))
            db_ping = False

        healthy = SystemHealth(database_status="online" if db_ping else "offline")
        return Response(
            content=healthy,
            status_code=HTTP_200_OK if db_ping else HTTP_503_SERVICE_UNAVAILABLE,
            media_type=MediaType.JSON,
        )
