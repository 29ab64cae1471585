from .voice_usage_record import VoiceUsageRecord

__all__ = ("VoiceUsageRecord",)
