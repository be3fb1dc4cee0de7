"""Stress classification over a remote endpoint.

A sample is validated, turned into a base64 WAV payload plus acoustic
features, and submitted to a :class:`ClassificationEndpoint`.  Transient
failures are retried once after a short backoff; anything still failing is
surfaced as :class:`ClassifierUnavailableError`.  Silent samples never leave
the device: they resolve locally to a calm verdict.
"""

from __future__ import annotations

import base64
import io
import logging
import time
import wave
from typing import Any, Callable, Dict, Mapping

from errors import (
    CLASSIFIER_PROTOCOL_ERROR,
    ClassifierUnavailableError,
    ClassifyError,
    InvalidInputError,
)
from features import extract_features
from interfaces import ClassificationEndpoint
from models import AcousticFeatures, AudioSample, StressLevel, StressSeverity, now_ms

logger = logging.getLogger(__name__)

SILENCE_CONFIDENCE = 0.9


def pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def parse_verdict(payload: Mapping[str, Any]) -> StressLevel:
    """Map an endpoint response body onto a :class:`StressLevel`."""
    if not isinstance(payload, Mapping):
        raise ClassifyError("response body is not an object", code=CLASSIFIER_PROTOCOL_ERROR)
    try:
        severity = StressSeverity.parse(payload["level"])
        confidence = float(payload["confidence"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ClassifyError(
            f"malformed verdict: {exc}", code=CLASSIFIER_PROTOCOL_ERROR
        ) from exc
    if confidence != confidence:  # NaN
        raise ClassifyError("confidence is NaN", code=CLASSIFIER_PROTOCOL_ERROR)

    indicators = payload.get("indicators") or ()
    if isinstance(indicators, str):
        indicators = (indicators,)
    emotions = payload.get("emotions")
    if isinstance(emotions, Mapping):
        try:
            emotions = {str(k): float(v) for k, v in emotions.items()}
        except (TypeError, ValueError):
            emotions = None
    else:
        emotions = None

    return StressLevel(
        severity=severity,
        confidence=min(1.0, max(0.0, confidence)),
        timestamp_ms=now_ms(),
        indicators=tuple(str(i) for i in indicators),
        emotions=emotions,
    )


def describe_features(features: AcousticFeatures) -> tuple[str, ...]:
    indicators = []
    if features.volume > 70:
        indicators.append("Elevated voice volume detected")
    if features.speech_rate > 5.0:
        indicators.append("Rapid speech pattern detected")
    if features.pitch_hz > 280:
        indicators.append("Elevated pitch detected")
    if features.energy_variance > 0.45:
        indicators.append("Irregular speech pattern detected")
    return tuple(indicators)


class StressClassifier:
    def __init__(
        self,
        endpoint: ClassificationEndpoint,
        request_timeout_s: float = 10.0,
        retry_backoff_s: float = 1.0,
        skip_silence: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._endpoint = endpoint
        self._request_timeout_s = request_timeout_s
        self._retry_backoff_s = retry_backoff_s
        self._skip_silence = skip_silence
        self._sleep = sleep

    def classify(self, sample: AudioSample) -> StressLevel:
        self._validate(sample)
        features = extract_features(sample.pcm16_bytes, sample.sample_rate, sample.channels)
        if self._skip_silence and features.is_silent:
            logger.debug("silent sample, skipping remote classification")
            return StressLevel(
                severity=StressSeverity.CALM,
                confidence=SILENCE_CONFIDENCE,
                timestamp_ms=now_ms(),
                indicators=("No voice activity detected",),
            )

        wav_b64 = pcm_to_wav_base64(sample.pcm16_bytes, sample.sample_rate, sample.channels)
        body = self._submit_with_retry(wav_b64, features)
        verdict = parse_verdict(body)
        if not verdict.indicators:
            verdict = StressLevel(
                severity=verdict.severity,
                confidence=verdict.confidence,
                timestamp_ms=verdict.timestamp_ms,
                indicators=describe_features(features),
                emotions=verdict.emotions,
            )
        logger.info(
            "verdict %s (confidence %.0f%%, volume %.1f, pitch %.1f Hz)",
            verdict.severity.label,
            verdict.confidence * 100,
            features.volume,
            features.pitch_hz,
        )
        return verdict

    def _validate(self, sample: AudioSample) -> None:
        if not sample.pcm16_bytes:
            raise InvalidInputError("audio sample is empty")
        if len(sample.pcm16_bytes) % (2 * max(sample.channels, 1)):
            raise InvalidInputError("audio sample is not whole 16-bit frames")
        if sample.duration_ms <= 0:
            raise InvalidInputError("audio sample has no duration")

    def _submit_with_retry(self, wav_b64: str, features: AcousticFeatures) -> Dict[str, Any]:
        try:
            return self._endpoint.submit(wav_b64, features, self._request_timeout_s)
        except ClassifyError as exc:
            if not exc.retryable:
                raise
            logger.warning("classification failed (%s), retrying in %.1fs", exc.code, self._retry_backoff_s)
        self._sleep(self._retry_backoff_s)
        try:
            return self._endpoint.submit(wav_b64, features, self._request_timeout_s)
        except ClassifyError as exc:
            if not exc.retryable:
                raise
            raise ClassifierUnavailableError(f"classification failed after retry: {exc}") from exc
