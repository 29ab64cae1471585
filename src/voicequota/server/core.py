# pylint: disable=[invalid-name,import-outside-toplevel]
from __future__ import annotations

from typing import TYPE_CHECKING

from litestar.di import Provide
from litestar.openapi.config import OpenAPIConfig
from litestar.openapi.plugins import ScalarRenderPlugin
from litestar.plugins import CLIPluginProtocol, InitPluginProtocol

if TYPE_CHECKING:
    from click import Group
    from litestar import Litestar
    from litestar.config.app import AppConfig


class ApplicationCore(InitPluginProtocol, CLIPluginProtocol):
    """Application core configuration plugin.

    This class is responsible for configuring the main Litestar application with our routes, guards, and various plugins

    """

    def on_cli_init(self, cli: Group) -> None:
        from voicequota.cli.commands import voice_group

        cli.add_command(voice_group)

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Configure application for use with SQLAlchemy.

        Args:
            app_config: The :class:`AppConfig <litestar.config.app.AppConfig>` instance.
        """

        from advanced_alchemy.exceptions import RepositoryError
        from litestar.datastructures import State
        from litestar.enums import RequestEncodingType
        from litestar.params import Body
        from litestar.security.jwt import Token
        from sqlalchemy.ext.asyncio import AsyncSession

        from voicequota.__about__ import __version__ as current_version
        from voicequota.config import app as config
        from voicequota.config import get_settings
        from voicequota.db import models as m
        from voicequota.domain.accounts.deps import provide_user
        from voicequota.domain.accounts.guards import Identity
        from voicequota.domain.accounts.guards import auth as jwt_auth
        from voicequota.domain.quota.controllers import UsageController
        from voicequota.domain.quota.gate import QuotaGate
        from voicequota.domain.quota.services import UsageLedgerService
        from voicequota.domain.system.controllers import SystemController
        from voicequota.domain.voice.controllers import TranscriptionController
        from voicequota.domain.voice.services import TranscriptionRequestHandler
        from voicequota.domain.voice.transcription import Transcriber
        from voicequota.lib.exceptions import ApplicationError, exception_to_http_response
        from voicequota.server import plugins

        settings = get_settings()
        app_config.debug = settings.app.DEBUG
        # openapi
        app_config.openapi_config = OpenAPIConfig(
            title=settings.app.NAME,
            version=current_version,
            components=[jwt_auth.openapi_components],
            security=[jwt_auth.security_requirement],
            use_handler_docstrings=True,
            render_plugins=[ScalarRenderPlugin(version="latest")],
        )
        # jwt auth (updates openapi config)
        app_config = jwt_auth.on_app_init(app_config)
        # security
        app_config.cors_config = config.cors
        # plugins
        app_config.plugins.extend(
            [
                plugins.structlog,
                plugins.granian,
                plugins.alchemy,
            ],
        )

        # routes
        app_config.route_handlers.extend(
            [
                SystemController,
                UsageController,
                TranscriptionController,
            ],
        )
        # signatures
        app_config.signature_namespace.update(
            {
                "Token": Token,
                "RequestEncodingType": RequestEncodingType,
                "Body": Body,
                "State": State,
                "m": m,
                "AsyncSession": AsyncSession,
                "Identity": Identity,
                "UsageLedgerService": UsageLedgerService,
                "QuotaGate": QuotaGate,
                "Transcriber": Transcriber,
                "TranscriptionRequestHandler": TranscriptionRequestHandler,
            },
        )
        # exception handling
        app_config.exception_handlers = {
            ApplicationError: exception_to_http_response,
            RepositoryError: exception_to_http_response,
        }
        # dependencies
        dependencies = {"current_user": Provide(provide_user)}
        app_config.dependencies.update(dependencies)
        # lifecycle
        app_config.on_startup.append(self._init_transcriber)
        app_config.on_shutdown.append(self._close_transcriber)
        return app_config

    @staticmethod
    def _init_transcriber(app: Litestar) -> None:
        """Create the process-wide transcriber unless one was installed already."""
        from voicequota.config import get_settings
        from voicequota.domain.voice.transcription import OpenAITranscriber

        if app.state.get("transcriber") is None:
            app.state.transcriber = OpenAITranscriber.from_settings(get_settings().ai)

    @staticmethod
    async def _close_transcriber(app: Litestar) -> None:
        transcriber = app.state.get("transcriber")
        close = getattr(transcriber, "aclose", None)
        if close is not None:
            await close()
