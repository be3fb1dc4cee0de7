"""Lightweight acoustic features used as stress proxies."""

from __future__ import annotations

import numpy as np

from models import AcousticFeatures

NEUTRAL_PITCH_HZ = 150.0
SILENCE_VOLUME = 3.0
ENERGY_FRAME = 1024


def pcm16_to_float(pcm: bytes, channels: int = 1) -> np.ndarray:
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float64) / 32768.0
    if channels > 1:
        usable = len(samples) - len(samples) % channels
        samples = samples[:usable].reshape(-1, channels).mean(axis=1)
    return samples


def zero_crossing_rate(samples: np.ndarray) -> float:
    if len(samples) < 2:
        return 0.0
    crossings = np.count_nonzero(np.diff(np.signbit(samples)))
    return float(crossings) / len(samples)


def estimate_pitch(samples: np.ndarray, sample_rate: int) -> float:
    """Autocorrelation pitch in the 50-500 Hz search range.

    Returns the neutral pitch when the peak correlation is weak or the
    estimate falls outside the 80-500 Hz voice range.
    """
    n = len(samples)
    min_period = sample_rate // 500
    max_period = min(sample_rate // 50, n // 2)
    if n < 2 or max_period <= min_period:
        return NEUTRAL_PITCH_HZ
    size = 1 << (2 * n - 1).bit_length()
    spectrum = np.fft.rfft(samples, size)
    corr = np.fft.irfft(spectrum * np.conj(spectrum), size)[:n]
    power = corr[0] / n
    if power <= 0:
        return NEUTRAL_PITCH_HZ
    lags = np.arange(min_period, max_period)
    normalized = corr[lags] / (n - lags)
    peak = float(normalized.max())
    if peak < 0.3 * power:
        return NEUTRAL_PITCH_HZ
    # First lag near the peak, climbed to its local maximum, avoids octave errors.
    best = int(np.nonzero(normalized >= 0.9 * peak)[0][0])
    while best + 1 < len(normalized) and normalized[best + 1] > normalized[best]:
        best += 1
    pitch = sample_rate / float(lags[best])
    if 80.0 <= pitch <= 500.0:
        return pitch
    return NEUTRAL_PITCH_HZ


def spectral_centroid(samples: np.ndarray, sample_rate: int) -> float:
    if len(samples) == 0:
        return 0.0
    magnitudes = np.abs(np.fft.rfft(samples))
    total = magnitudes.sum()
    if total == 0:
        return 0.0
    freqs = np.fft.rfftfreq(len(samples), d=1.0 / sample_rate)
    return float((freqs * magnitudes).sum() / total)


def energy_variance(samples: np.ndarray, frame: int = ENERGY_FRAME) -> float:
    frames = len(samples) // frame
    if frames < 2:
        return 0.0
    energies = np.square(samples[: frames * frame]).reshape(frames, frame).mean(axis=1)
    return float(np.std(energies))


def estimate_speech_rate(zcr: float, variance: float) -> float:
    normalized_zcr = float(np.clip((zcr - 0.03) / 0.12, 0.0, 1.0))
    normalized_variance = float(np.clip((variance - 0.05) / 0.25, 0.0, 1.0))
    rate = 2.0 + normalized_zcr * 2.0 + normalized_variance * 1.5
    return float(np.clip(rate, 1.0, 6.0))


def has_voice_activity(rms: float, zcr: float, centroid: float) -> bool:
    criteria = (
        rms > 0.03,
        0.01 < zcr < 0.30,
        200.0 < centroid < 5000.0,
    )
    return sum(criteria) >= 2


def extract_features(pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> AcousticFeatures:
    samples = pcm16_to_float(pcm, channels)
    if len(samples) == 0:
        return AcousticFeatures(0.0, 0.0, 0.0, NEUTRAL_PITCH_HZ, 0.0, 0.0, 1.0, False)
    rms = float(np.sqrt(np.mean(np.square(samples))))
    zcr = zero_crossing_rate(samples)
    centroid = spectral_centroid(samples, sample_rate)
    variance = energy_variance(samples)
    return AcousticFeatures(
        rms=rms,
        volume=min(100.0, rms * 100.0),
        zcr=zcr,
        pitch_hz=estimate_pitch(samples, sample_rate),
        spectral_centroid_hz=centroid,
        energy_variance=variance,
        speech_rate=estimate_speech_rate(zcr, variance),
        voice_activity=has_voice_activity(rms, zcr, centroid),
    )
