from . import controllers, schemas, urls

__all__ = ("controllers", "schemas", "urls")
