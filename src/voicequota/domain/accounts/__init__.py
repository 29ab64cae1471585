"""Identity of the caller, as issued by the identity provider."""

from . import deps, guards

__all__ = ("deps", "guards")
