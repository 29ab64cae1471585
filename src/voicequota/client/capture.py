"""Press-to-talk audio capture with silence detection.

``AudioCapture`` owns the microphone for one recording at a time and walks
``idle -> recording -> processing -> idle``. The microphone and the sampling
task are released on every way out of ``recording``, including cancellation
of the caller.
"""

from __future__ import annotations

import asyncio
import io
import wave
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import httpx
import numpy as np
import structlog

from voicequota.client.api import AdmissionDeniedError, VoiceQuotaAPIError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from contextlib import AbstractAsyncContextManager

    from voicequota.domain.voice.schemas import TranscriptionResponse

__all__ = (
    "AudioCapture",
    "AudioSource",
    "CaptureError",
    "CaptureResult",
    "CaptureStatus",
    "Microphone",
    "PermissionDeniedError",
    "RecorderBusyError",
    "RecorderState",
    "SilenceDetector",
    "SoundDeviceSource",
    "StopReason",
)

logger = structlog.get_logger()

SAMPLE_RATE = 16000
CHANNELS = 1
DTYPE = "int16"
SILENCE_THRESHOLD = 0.01
SILENCE_DURATION_MS = 3000
MAX_RECORDING_MS = 120_000
SAMPLE_INTERVAL_SECONDS = 0.1
MAX_DURATION_NOTICE = "Maximum recording duration reached"


class CaptureError(Exception):
    """Base exception type for audio capture."""


class PermissionDeniedError(CaptureError):
    """The platform refused access to the microphone."""


class RecorderBusyError(CaptureError):
    """A recording was started while another one is active."""


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


class StopReason(str, Enum):
    MANUAL = "manual"
    SILENCE = "silence"
    MAX_DURATION = "max_duration"


class CaptureStatus(str, Enum):
    TRANSCRIBED = "transcribed"
    NO_AUDIO = "no_audio"
    PERMISSION_DENIED = "permission_denied"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class CaptureResult:
    """What one press-to-talk gesture produced."""

    status: CaptureStatus
    stop_reason: StopReason | None = None
    duration_ms: int = 0
    response: TranscriptionResponse | None = None
    error: str | None = None
    notice: str | None = None

    @property
    def text(self) -> str:
        return self.response.text if self.response is not None else ""


class SilenceDetector:
    """Tracks how long the input level has stayed below a threshold.

    Any sample at or above the threshold clears the silence timer.
    """

    def __init__(self, threshold: float = SILENCE_THRESHOLD, duration_ms: int = SILENCE_DURATION_MS) -> None:
        self.threshold = threshold
        self.duration_ms = duration_ms
        self._silence_since: float | None = None

    @property
    def silence_since(self) -> float | None:
        return self._silence_since

    def observe(self, level: float, now_ms: float) -> bool:
        """Record a level sample; return True once silence has lasted long enough."""
        if level >= self.threshold:
            self._silence_since = None
            return False
        if self._silence_since is None:
            self._silence_since = now_ms
        return now_ms - self._silence_since >= self.duration_ms


class Microphone(Protocol):
    """An open input stream."""

    def level(self) -> float:
        """Normalised energy (0-1) of the most recent block."""
        ...

    def clip(self) -> bytes:
        """Everything captured so far as a WAV clip, empty bytes if nothing was captured."""
        ...


class AudioSource(Protocol):
    def open(self) -> AbstractAsyncContextManager[Microphone]:
        """Acquire the microphone for the duration of the context.

        Raises:
            PermissionDeniedError: If the platform denies access
        """
        ...


def encode_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS) -> bytes:
    """Wrap 16-bit PCM frames in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as clip:
        clip.setnchannels(channels)
        clip.setsampwidth(2)
        clip.setframerate(sample_rate)
        clip.writeframes(pcm)
    return buffer.getvalue()


def rms_level(block: np.ndarray) -> float:
    """Root mean square of an int16 block, normalised to 0-1."""
    if block.size == 0:
        return 0.0
    samples = block.astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(np.square(samples))))


class _StreamBuffer:
    """Collects blocks handed over by the PortAudio callback thread."""

    def __init__(self, sample_rate: int, channels: int) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._blocks: list[np.ndarray] = []
        self._level = 0.0

    def append(self, block: np.ndarray) -> None:
        self._blocks.append(block)
        self._level = rms_level(block)

    def level(self) -> float:
        return self._level

    def clip(self) -> bytes:
        if not self._blocks:
            return b""
        pcm = np.concatenate(self._blocks).astype(np.int16).tobytes()
        if not pcm:
            return b""
        return encode_wav(pcm, self.sample_rate, self.channels)


class SoundDeviceSource:
    """Microphone input through PortAudio (``sounddevice``)."""

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        channels: int = CHANNELS,
        blocksize: int = SAMPLE_RATE // 10,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocksize = blocksize
        self.device = device

    @asynccontextmanager
    async def open(self) -> AsyncIterator[Microphone]:
        # loading sounddevice loads the PortAudio shared library
        import sounddevice as sd

        buffer = _StreamBuffer(self.sample_rate, self.channels)
        loop = asyncio.get_running_loop()

        def callback(indata: np.ndarray, frames: int, time: object, status: object) -> None:
            if status:
                logger.debug("Audio input status", status=str(status))
            loop.call_soon_threadsafe(buffer.append, indata.copy())

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=DTYPE,
                blocksize=self.blocksize,
                device=self.device,
                callback=callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            msg = f"Microphone access denied: {exc}"
            raise PermissionDeniedError(msg) from exc

        try:
            yield buffer
        finally:
            stream.stop()
            stream.close()


class AudioCapture:
    """Runs press-to-talk recordings and submits each clip once.

    Args:
        source: Where audio comes from
        submit: Called with ``(clip, language, duration_seconds)``; usually
            :meth:`VoiceQuotaClient.transcribe`
        language: Language code sent with every clip
    """

    def __init__(
        self,
        source: AudioSource,
        submit: Callable[[bytes, str, float], Awaitable[TranscriptionResponse]],
        *,
        language: str = "en",
        silence_threshold: float = SILENCE_THRESHOLD,
        silence_ms: int = SILENCE_DURATION_MS,
        max_duration_ms: int = MAX_RECORDING_MS,
        sample_interval: float = SAMPLE_INTERVAL_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.source = source
        self.submit = submit
        self.language = language
        self.silence_threshold = silence_threshold
        self.silence_ms = silence_ms
        self.max_duration_ms = max_duration_ms
        self.sample_interval = sample_interval
        self.clock = clock
        self._state = RecorderState.IDLE
        self._disabled = False
        self._stop_requested: asyncio.Event | None = None
        self._in_flight: set[asyncio.Task[TranscriptionResponse]] = set()

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def disabled(self) -> bool:
        """True after the microphone was denied, until :meth:`reset`."""
        return self._disabled

    def reset(self) -> None:
        self._disabled = False

    def stop(self) -> None:
        """Stop the current recording; a no-op unless recording."""
        if self._state is RecorderState.RECORDING and self._stop_requested is not None:
            self._stop_requested.set()

    async def record(self) -> CaptureResult:
        """Record one clip, then transcribe it.

        Returns:
            CaptureResult describing how the gesture ended

        Raises:
            RecorderBusyError: If a recording is already active
        """
        if self._state is not RecorderState.IDLE:
            msg = f"Recorder is {self._state.value}"
            raise RecorderBusyError(msg)
        if self._disabled:
            return CaptureResult(status=CaptureStatus.PERMISSION_DENIED, error="Microphone access denied")

        self._state = RecorderState.RECORDING
        stop_requested = self._stop_requested = asyncio.Event()
        try:
            try:
                async with self.source.open() as microphone:
                    reason, duration_ms = await self._capture(microphone, stop_requested)
                    clip = microphone.clip()
            except PermissionDeniedError as exc:
                self._disabled = True
                logger.warning("Microphone access denied", error=str(exc))
                return CaptureResult(status=CaptureStatus.PERMISSION_DENIED, error=str(exc))

            notice = None
            if reason is StopReason.MAX_DURATION:
                notice = MAX_DURATION_NOTICE
                logger.info(MAX_DURATION_NOTICE, duration_ms=duration_ms)

            if not clip:
                logger.info("No audio recorded", stop_reason=reason.value)
                return CaptureResult(
                    status=CaptureStatus.NO_AUDIO,
                    stop_reason=reason,
                    duration_ms=duration_ms,
                    error="No audio recorded",
                    notice=notice,
                )

            self._state = RecorderState.PROCESSING
            result = await self._submit(clip, duration_ms)
            result.stop_reason = reason
            result.notice = notice
            return result
        finally:
            self._stop_requested = None
            self._state = RecorderState.IDLE

    async def _capture(self, microphone: Microphone, stop_requested: asyncio.Event) -> tuple[StopReason, int]:
        started = self._now()
        sampler = asyncio.create_task(self._sample(microphone, started, stop_requested))
        try:
            reason = await sampler
        finally:
            sampler.cancel()
        return reason, int((self._now() - started) * 1000)

    async def _sample(self, microphone: Microphone, started: float, stop_requested: asyncio.Event) -> StopReason:
        detector = SilenceDetector(self.silence_threshold, self.silence_ms)
        while True:
            if stop_requested.is_set():
                return StopReason.MANUAL
            elapsed_ms = (self._now() - started) * 1000
            if elapsed_ms >= self.max_duration_ms:
                return StopReason.MAX_DURATION
            if detector.observe(microphone.level(), elapsed_ms):
                return StopReason.SILENCE
            try:
                await asyncio.wait_for(stop_requested.wait(), timeout=self.sample_interval)
            except TimeoutError:
                continue

    async def _submit(self, clip: bytes, duration_ms: int) -> CaptureResult:
        request = asyncio.ensure_future(self.submit(clip, self.language, duration_ms / 1000))
        self._in_flight.add(request)
        request.add_done_callback(self._forget)
        try:
            # a cancelled caller must not abort a request the server may already bill
            response = await asyncio.shield(request)
        except asyncio.CancelledError:
            logger.info("Recording cancelled while processing, result discarded")
            raise
        except AdmissionDeniedError as exc:
            return CaptureResult(status=CaptureStatus.DENIED, duration_ms=duration_ms, error=exc.message)
        except VoiceQuotaAPIError as exc:
            logger.warning("Transcription request failed", status_code=exc.status_code, error=exc.message)
            return CaptureResult(status=CaptureStatus.FAILED, duration_ms=duration_ms, error=exc.message)
        except httpx.HTTPError as exc:
            logger.warning("Transcription request failed", error=str(exc))
            return CaptureResult(status=CaptureStatus.FAILED, duration_ms=duration_ms, error="Failed to transcribe audio")

        if response.warning:
            logger.info("Voice input warning", warning=response.warning)
        return CaptureResult(status=CaptureStatus.TRANSCRIBED, duration_ms=duration_ms, response=response)

    def _forget(self, request: asyncio.Future[TranscriptionResponse]) -> None:
        self._in_flight.discard(request)  # type: ignore[arg-type]
        if not request.cancelled() and request.exception() is not None:
            logger.debug("Discarded transcription request failed", error=str(request.exception()))

    def _now(self) -> float:
        if self.clock is not None:
            return self.clock()
        return asyncio.get_running_loop().time()
