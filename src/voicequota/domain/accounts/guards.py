from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from litestar.security.jwt import JWTAuth, Token

from voicequota.config import get_settings
from voicequota.domain.system import urls as system_urls

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection

__all__ = ("Identity", "auth", "current_identity_from_token")

settings = get_settings()


@dataclass(frozen=True)
class Identity:
    """Authenticated caller. ``id`` is opaque to this service."""

    id: str


async def current_identity_from_token(token: Token, connection: ASGIConnection[Any, Any, Any, Any]) -> Identity | None:
    """Lookup the caller from a JWT token.

    Args:
        token (str): JWT Token Object
        connection (ASGIConnection[Any, Any, Any, Any]): ASGI connection.

    Returns:
        Identity: The identity named by the token subject, or None when it has none.
    """
    if not token.sub:
        return None
    return Identity(id=token.sub)


auth = JWTAuth[Identity](
    retrieve_user_handler=current_identity_from_token,
    token_secret=settings.app.SECRET_KEY,
    default_token_expiration=timedelta(days=settings.app.TOKEN_EXPIRATION_DAYS),
    exclude=[
        system_urls.SYSTEM_HEALTH,
        "^/schema",
    ],
)
