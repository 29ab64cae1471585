from voicequota.server import plugins

__all__ = ("plugins",)
