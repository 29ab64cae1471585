from __future__ import annotations

import io
import os
import tempfile
import wave
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

_DB_PATH = Path(tempfile.gettempdir()) / f"voicequota-test-{os.getpid()}.sqlite3"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-0123456789")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("LITESTAR_DEBUG", "false")

from voicequota.domain.voice.transcription import TranscriptionResult  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator

    from httpx import AsyncClient
    from litestar import Litestar


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _database_file() -> Iterator[None]:
    _DB_PATH.unlink(missing_ok=True)
    yield
    _DB_PATH.unlink(missing_ok=True)


def make_wav(seconds: float, sample_rate: int = 16000) -> bytes:
    """Silent mono 16-bit WAV clip of the given length."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as clip:
        clip.setnchannels(1)
        clip.setsampwidth(2)
        clip.setframerate(sample_rate)
        clip.writeframes(b"\x00\x00" * int(seconds * sample_rate))
    return buffer.getvalue()


class FakeTranscriber:
    """Transcriber returning a fixed text and a configurable measured duration."""

    def __init__(self, text: str = "hello world", duration_seconds: float = 4.2) -> None:
        self.text = text
        self.duration_seconds = duration_seconds
        self.error: Exception | None = None
        self.calls: list[tuple[bytes, str, str]] = []

    async def transcribe(self, audio: bytes, language: str, *, filename: str = "clip.wav") -> TranscriptionResult:
        self.calls.append((audio, language, filename))
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=self.text, duration_seconds=self.duration_seconds, language=language)


@pytest.fixture()
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture()
def app(transcriber: FakeTranscriber) -> Litestar:
    from voicequota.asgi import create_app

    application = create_app()
    application.state.transcriber = transcriber
    return application


@pytest.fixture()
async def client(app: Litestar) -> AsyncIterator[AsyncClient]:
    from litestar.testing import AsyncTestClient

    async with AsyncTestClient(app=app) as test_client:
        yield test_client


@pytest.fixture()
def user_id() -> str:
    return f"user-{uuid4().hex}"


@pytest.fixture()
def user_token_headers(user_id: str) -> dict[str, str]:
    from voicequota.domain.accounts.guards import auth

    return {"Authorization": f"Bearer {auth.create_token(identifier=user_id)}"}


@pytest.fixture()
def make_clip() -> Callable[..., bytes]:
    return make_wav
