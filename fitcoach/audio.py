"""Audio device access: the exclusive microphone plus PCM input/output streams.

sounddevice is imported lazily. Importing it fails with OSError on hosts
without PortAudio, which callers report as an unavailable capability rather
than crashing the session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional, Tuple

import numpy as np

from fitcoach.errors import CaptureUnavailableError, MicrophoneBusyError, PermissionDeniedError

logger = logging.getLogger(__name__)


def load_sounddevice():
    import sounddevice as sd
    return sd


def to_mono_int16(indata: np.ndarray) -> Tuple[bytes, float]:
    """
    Convert sounddevice callback 'indata' into mono PCM16 little-endian bytes.
    Uses the first channel only.
    Returns (pcm_bytes, rms_float_0_1).
    """
    x = np.asarray(indata)

    if x.ndim == 2 and x.shape[1] >= 1:
        mono = x[:, 0]
    else:
        mono = x.reshape(-1)

    if mono.dtype == np.int16:
        f = mono.astype(np.float32) / 32768.0
    else:
        f = mono.astype(np.float32)

    f = np.clip(f, -1.0, 1.0)
    pcm16 = (f * 32767.0).astype(np.int16).tobytes(order="C")
    rms = float(np.sqrt(np.mean(f * f)) + 1e-12) if f.size else 0.0
    return pcm16, rms


def scale_pcm16(pcm: bytes, volume: float) -> bytes:
    """Apply a 0..1 gain to PCM16 samples."""
    if volume >= 1.0:
        return pcm
    samples = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) * max(0.0, volume)
    return np.clip(samples, -32768, 32767).astype(np.int16).tobytes()


def probe_input_device() -> None:
    """Blocking check that an input device can be opened."""
    sd = load_sounddevice()
    try:
        sd.check_input_settings(channels=1, dtype="float32")
    except (sd.PortAudioError, ValueError) as e:
        raise PermissionDeniedError("Microphone access was denied or no input device is available") from e


# -------------------- Exclusive microphone ownership --------------------

class MicrophoneLease:
    """Proof of ownership of the microphone; release is idempotent."""

    def __init__(self, microphone: "Microphone", owner: str) -> None:
        self._microphone = microphone
        self.owner = owner
        self.released = False

    def release(self) -> None:
        self._microphone._release(self)


class Microphone:
    """Single exclusive input device shared by speech capture and live voice."""

    def __init__(self, probe: Optional[Callable[[], None]] = None) -> None:
        self._probe = probe or probe_input_device
        self._lease: Optional[MicrophoneLease] = None
        self._lock = threading.Lock()

    @property
    def owner(self) -> Optional[str]:
        lease = self._lease
        return lease.owner if lease else None

    @property
    def in_use(self) -> bool:
        return self._lease is not None

    def acquire(self, owner: str) -> MicrophoneLease:
        with self._lock:
            if self._lease is not None:
                raise MicrophoneBusyError(f"The microphone is already in use by {self._lease.owner.replace('_', ' ')}")
            self._lease = MicrophoneLease(self, owner)
            logger.debug("[MIC] acquired by %s", owner)
            return self._lease

    def _release(self, lease: MicrophoneLease) -> None:
        with self._lock:
            if lease.released:
                return
            lease.released = True
            if self._lease is lease:
                self._lease = None
                logger.debug("[MIC] released by %s", lease.owner)

    async def request_permission(self) -> None:
        """Ask the platform for microphone access without holding the device."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._probe)
        except (ImportError, OSError) as e:
            raise CaptureUnavailableError("No audio input backend is available") from e


# -------------------- PCM streams --------------------

class MicInput:
    """Microphone PCM16 mono frames delivered onto the event loop."""

    def __init__(self, sample_rate: int = 16000, blocksize: Optional[int] = None,
                 device=None, max_frames: int = 250) -> None:
        self.sample_rate = int(sample_rate)
        self.blocksize = int(blocksize or self.sample_rate // 50)  # ~20ms
        self.device = device
        self.max_frames = max_frames
        self.level = 0.0
        self.drops = 0
        self._queue: Optional[asyncio.Queue] = None
        self._stream = None

    def open(self) -> None:
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.max_frames)

        try:
            sd = load_sounddevice()
        except (ImportError, OSError) as e:
            raise CaptureUnavailableError("No audio input backend is available") from e

        def audio_cb(indata, frames, time_info, status):
            if status:
                logger.debug("[MIC] sd_status: %s", status)
            pcm16, rms = to_mono_int16(indata)
            try:
                loop.call_soon_threadsafe(self._push, pcm16, rms)
            except RuntimeError:
                # loop already closed while PortAudio delivered a last block
                pass

        try:
            self._stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.blocksize,
                callback=audio_cb,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self.close()
            raise PermissionDeniedError("Microphone access was denied or no input device is available") from e
        except ValueError as e:
            self.close()
            raise CaptureUnavailableError(f"Invalid microphone settings: {e}") from e

    def _push(self, pcm16: bytes, rms: float) -> None:
        self.level = rms
        # backpressure: drop oldest if behind to keep audio current
        if self._queue.full():
            self._queue.get_nowait()
            self.drops += 1
        self._queue.put_nowait(pcm16)

    async def read(self) -> bytes:
        return await self._queue.get()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class SpeakerOutput:
    """PCM16 mono output with a software volume and a drain signal."""

    def __init__(self, sample_rate: int = 16000, device=None,
                 on_drain: Optional[Callable[[], None]] = None) -> None:
        self.sample_rate = int(sample_rate)
        self.device = device
        self.volume = 1.0
        self._on_drain = on_drain
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._drained: Optional[asyncio.Event] = None
        self._stream = None

    def open(self) -> None:
        """Raises ImportError/OSError when no backend, sd.PortAudioError when no device."""
        self._loop = asyncio.get_running_loop()
        self._drained = asyncio.Event()
        self._drained.set()

        sd = load_sounddevice()
        self._stream = sd.RawOutputStream(
            device=self.device,
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            callback=self._callback,
        )
        self._stream.start()

    @property
    def pending_bytes(self) -> int:
        with self._lock:
            return len(self._buffer)

    def write(self, pcm: bytes) -> None:
        if not pcm:
            return
        with self._lock:
            self._buffer.extend(pcm)
        if self._drained is not None:
            self._drained.clear()

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
        self._signal_drained()

    def _callback(self, outdata, frames, time_info, status) -> None:
        n = len(outdata)
        with self._lock:
            chunk = bytes(self._buffer[:n])
            del self._buffer[:n]
            emptied = bool(chunk) and not self._buffer

        if chunk:
            chunk = scale_pcm16(chunk, self.volume)
        outdata[:] = chunk + b"\x00" * (n - len(chunk))

        if emptied:
            try:
                self._loop.call_soon_threadsafe(self._signal_drained)
            except RuntimeError:
                pass

    def _signal_drained(self) -> None:
        with self._lock:
            if self._buffer:
                return
        if self._drained is None or self._drained.is_set():
            return
        self._drained.set()
        if self._on_drain:
            self._on_drain()

    async def drain(self) -> None:
        await self._drained.wait()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        with self._lock:
            self._buffer.clear()
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
