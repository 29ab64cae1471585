"""URL constants for voice domain."""

TRANSCRIBE = "/api/transcribe"
