"""URL constants for quota domain."""

AI_USAGE = "/api/ai-usage"
