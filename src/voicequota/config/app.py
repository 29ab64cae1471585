from __future__ import annotations

import logging

from advanced_alchemy.extensions.litestar import (
    AsyncSessionConfig,
    EngineConfig,
    SQLAlchemyAsyncConfig,
)
from litestar.config.cors import CORSConfig
from litestar.logging.config import LoggingConfig, StructLoggingConfig
from litestar.middleware.logging import LoggingMiddlewareConfig
from litestar.plugins.pydantic import PydanticPlugin
from litestar.plugins.structlog import StructlogConfig

from voicequota.config.base import get_settings

settings = get_settings()

alchemy = SQLAlchemyAsyncConfig(
    connection_string=settings.db.URL,
    engine_config=EngineConfig(echo=settings.db.ECHO, pool_pre_ping=settings.db.POOL_PRE_PING),
    before_send_handler="autocommit",
    session_config=AsyncSessionConfig(expire_on_commit=False),
    create_all=settings.db.CREATE_ALL,
)

cors = CORSConfig(allow_origins=settings.app.ALLOWED_CORS_ORIGINS)

pydantic = PydanticPlugin(prefer_alias=True)

log = StructlogConfig(
    structlog_logging_config=StructLoggingConfig(
        log_exceptions="always",
        standard_lib_logging_config=LoggingConfig(
            root={"level": logging.getLevelName(settings.log.LEVEL), "handlers": ["queue_listener"]},
            loggers={
                "sqlalchemy.engine": {
                    "propagate": False,
                    "level": settings.log.SQLALCHEMY_LEVEL,
                    "handlers": ["console"],
                },
                "sqlalchemy.pool": {
                    "propagate": False,
                    "level": settings.log.SQLALCHEMY_LEVEL,
                    "handlers": ["console"],
                },
            },
        ),
    ),
    middleware_logging_config=LoggingMiddlewareConfig(
        request_log_fields=["method", "path", "path_params", "query"],
        response_log_fields=["status_code"],
    ),
)
