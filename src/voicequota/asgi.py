# pylint: disable=[invalid-name,import-outside-toplevel]
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar import Litestar


def create_app() -> Litestar:
    """Create ASGI application."""

    from litestar import Litestar

    from voicequota.server import plugins
    from voicequota.server.core import ApplicationCore

    # the pydantic plugin must be present at construction to replace Litestar's default one
    return Litestar(plugins=[ApplicationCore(), plugins.pydantic])
