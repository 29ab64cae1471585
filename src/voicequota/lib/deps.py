"""Application dependency provider generators.

Services are bound to the request's database session through advanced-alchemy's
service provider factory.
"""

from __future__ import annotations

from advanced_alchemy.extensions.litestar.providers import create_service_provider

__all__ = ("create_service_provider",)
