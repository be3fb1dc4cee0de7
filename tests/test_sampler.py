"""Tests for AudioSampler."""

from __future__ import annotations

import pytest

from errors import DeviceBusyError, DeviceLostError, InvalidInputError, PermissionDeniedError
from sampler import AudioSampler

from fakes import FakeAudioSource


def test_acquire_and_sample_window() -> None:
    source = FakeAudioSource()
    sampler = AudioSampler(source, window_ms=3000)

    handle = sampler.acquire()
    sample = sampler.next_sample(handle)

    assert sample.duration_ms == 3000
    assert len(sample.pcm16_bytes) == 16000 * 2 * 3
    assert sample.sample_rate == 16000
    assert sampler.is_held is True
    sampler.release(handle)
    assert sampler.is_held is False


def test_second_acquire_fails_fast_with_device_busy() -> None:
    sampler = AudioSampler(FakeAudioSource())
    handle = sampler.acquire()

    with pytest.raises(DeviceBusyError):
        sampler.acquire()

    sampler.release(handle)
    again = sampler.acquire()
    sampler.release(again)


def test_permission_denied_leaves_device_free() -> None:
    source = FakeAudioSource(deny=True)
    sampler = AudioSampler(source)

    with pytest.raises(PermissionDeniedError):
        sampler.acquire()

    source.deny = False
    handle = sampler.acquire()
    sampler.release(handle)


def test_release_is_idempotent() -> None:
    source = FakeAudioSource()
    sampler = AudioSampler(source)
    handle = sampler.acquire()

    sampler.release(handle)
    sampler.release(handle)
    sampler.release(None)

    assert source.closed == 1


def test_next_sample_after_release_raises_device_lost() -> None:
    sampler = AudioSampler(FakeAudioSource())
    handle = sampler.acquire()
    sampler.release(handle)

    with pytest.raises(DeviceLostError):
        sampler.next_sample(handle)


def test_stream_loss_propagates() -> None:
    sampler = AudioSampler(FakeAudioSource(lose_after=1))
    with sampler.session() as handle:
        sampler.next_sample(handle)
        with pytest.raises(DeviceLostError, match="unplugged"):
            sampler.next_sample(handle)
    assert sampler.is_held is False


def test_scoped_session_releases_on_error() -> None:
    source = FakeAudioSource()
    sampler = AudioSampler(source)

    with pytest.raises(RuntimeError):
        with sampler.session():
            raise RuntimeError("boom")

    assert source.closed == 1
    assert sampler.is_held is False


def test_window_must_be_positive() -> None:
    with pytest.raises(InvalidInputError):
        AudioSampler(FakeAudioSource(), window_ms=0)


def test_two_samplers_over_one_microphone_are_exclusive() -> None:
    source = FakeAudioSource()
    first = AudioSampler(source)
    second = AudioSampler(source)
    handle = first.acquire()

    with pytest.raises(DeviceBusyError):
        second.acquire()

    assert source.opened == 1
    assert second.is_held is False
    first.release(handle)
    again = second.acquire()
    assert second.is_held is True
    second.release(again)
