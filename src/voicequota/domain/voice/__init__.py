"""Voice domain: transcription requests and supported languages."""

from . import controllers, deps, languages, schemas, services, transcription, urls

__all__ = ("controllers", "deps", "languages", "schemas", "services", "transcription", "urls")
