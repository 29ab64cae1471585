"""Identity dependency providers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar import Request

    from voicequota.domain.accounts.guards import Identity


async def provide_user(request: Request[Identity, Any, Any]) -> Identity:
    """Get the caller from the request.

    Args:
        request: current Request.

    Returns:
        Identity
    """
    return request.user
