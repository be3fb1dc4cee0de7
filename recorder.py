"""Microphone capture backed by sounddevice."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any, Optional

from errors import DeviceBusyError, DeviceLostError, PermissionDeniedError

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "not authorized", "access denied")
_BUSY_MARKERS = ("busy", "in use", "unanticipated host error")


class SoundDeviceStream:
    """One open input stream plus the bounded queue its callback feeds."""

    def __init__(self, sample_rate: int, channels: int, queue_maxsize: int) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.queue: Queue[bytes | None] = Queue(maxsize=queue_maxsize)
        self.carry = bytearray()
        self.dropped_chunks = 0
        self.running = False
        self.stream: Any = None

    def on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self.running or np is None:
            return
        if status:
            logger.debug("input stream status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        try:
            self.queue.put_nowait(payload)
        except Full:
            self.dropped_chunks += 1

    def on_finished(self) -> None:
        self.running = False
        self.push_sentinel()

    def push_sentinel(self) -> None:
        try:
            self.queue.put_nowait(None)
        except Full:
            # Make room so a blocked reader always sees the end of stream.
            try:
                self.queue.get_nowait()
            except Empty:
                pass
            try:
                self.queue.put_nowait(None)
            except Full:
                pass


class SoundDeviceSource:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        queue_maxsize: int = 100,
        stall_timeout_s: float = 2.0,
        device: Optional[Any] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.queue_maxsize = queue_maxsize
        self.stall_timeout_s = stall_timeout_s
        self.device = device
        self._lock = threading.Lock()

    def open(self) -> SoundDeviceStream:
        if sd is None:
            raise DeviceLostError("sounddevice is not installed")
        handle = SoundDeviceStream(self.sample_rate, self.channels, self.queue_maxsize)
        blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
        with self._lock:
            try:
                handle.stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    device=self.device,
                    callback=handle.on_audio,
                    finished_callback=handle.on_finished,
                )
                handle.running = True
                handle.stream.start()
            except Exception as exc:
                handle.running = False
                raise self._to_acquire_error(exc) from exc
        logger.info("microphone stream opened at %d Hz", self.sample_rate)
        return handle

    def read(self, stream: SoundDeviceStream, duration_ms: int) -> bytes:
        bytes_per_ms = stream.sample_rate * stream.channels * 2 / 1000.0
        needed = int(bytes_per_ms * duration_ms)
        # Keep whole int16 frames.
        needed -= needed % (2 * stream.channels)
        buf = stream.carry
        while len(buf) < needed:
            try:
                chunk = stream.queue.get(timeout=self.stall_timeout_s)
            except Empty:
                raise DeviceLostError("audio stream stalled") from None
            if chunk is None:
                raise DeviceLostError("audio stream closed")
            buf.extend(chunk)
        payload = bytes(buf[:needed])
        stream.carry = bytearray(buf[needed:])
        if stream.dropped_chunks:
            logger.warning("dropped %d audio chunks while classifying", stream.dropped_chunks)
            stream.dropped_chunks = 0
        return payload

    def close(self, stream: SoundDeviceStream) -> None:
        with self._lock:
            was_running = stream.running
            stream.running = False
            if stream.stream is not None:
                try:
                    stream.stream.stop()
                    stream.stream.close()
                finally:
                    stream.stream = None
            stream.push_sentinel()
        if was_running:
            logger.info("microphone stream closed")

    def _to_acquire_error(self, exc: Exception) -> Exception:
        low = str(exc).lower()
        if any(marker in low for marker in _PERMISSION_MARKERS):
            return PermissionDeniedError(str(exc))
        if any(marker in low for marker in _BUSY_MARKERS):
            return DeviceBusyError(str(exc))
        return DeviceLostError(str(exc))
