"""Exclusive microphone acquisition and fixed-window sampling."""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from errors import DeviceBusyError, DeviceLostError, InvalidInputError
from interfaces import AudioSource
from models import AudioSample, now_ms

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)

# One microphone holder per process, whichever sampler asks.
_device_guard = threading.Lock()


@dataclass
class SamplerHandle:
    handle_id: int
    stream: Any
    released: bool = False


class AudioSampler:
    """Owns the microphone: one holder at a time, one window per call.

    ``acquire`` never waits for the device; a second caller gets
    ``DeviceBusyError`` while the first still holds its handle, even when
    it goes through another sampler.
    """

    def __init__(
        self,
        source: AudioSource,
        window_ms: int = 4000,
        sample_rate: int = 16000,
        channels: int = 1,
    ) -> None:
        if window_ms <= 0:
            raise InvalidInputError(f"window_ms must be positive, got {window_ms}")
        self._source = source
        self.window_ms = window_ms
        self.sample_rate = sample_rate
        self.channels = channels
        self._holder: SamplerHandle | None = None
        self._release_lock = threading.Lock()

    @property
    def is_held(self) -> bool:
        return self._holder is not None

    def acquire(self) -> SamplerHandle:
        if not _device_guard.acquire(blocking=False):
            raise DeviceBusyError()
        try:
            stream = self._source.open()
        except BaseException:
            _device_guard.release()
            raise
        handle = SamplerHandle(handle_id=next(_handle_ids), stream=stream)
        self._holder = handle
        logger.debug("audio handle %d acquired", handle.handle_id)
        return handle

    def next_sample(self, handle: SamplerHandle) -> AudioSample:
        if handle.released or handle is not self._holder:
            raise DeviceLostError("audio handle is no longer valid")
        captured_at = now_ms()
        pcm = self._source.read(handle.stream, self.window_ms)
        if handle.released:
            raise DeviceLostError("audio handle released while sampling")
        return AudioSample(
            pcm16_bytes=pcm,
            duration_ms=self.window_ms,
            captured_at_ms=captured_at,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )

    def release(self, handle: SamplerHandle | None) -> None:
        if handle is None:
            return
        with self._release_lock:
            if handle.released:
                return
            handle.released = True
        try:
            self._source.close(handle.stream)
        except Exception:
            logger.exception("failed to close audio stream for handle %d", handle.handle_id)
        finally:
            if self._holder is handle:
                self._holder = None
                _device_guard.release()
        logger.debug("audio handle %d released", handle.handle_id)

    @contextmanager
    def session(self) -> Iterator[SamplerHandle]:
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)
