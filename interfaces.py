"""Protocol interfaces for the collaborators the monitor depends on."""

from __future__ import annotations

from typing import Any, Dict, Protocol

from models import AcousticFeatures, AudioSample, StressLevel


class AudioSource(Protocol):
    def open(self) -> Any: ...

    def read(self, stream: Any, duration_ms: int) -> bytes: ...

    def close(self, stream: Any) -> None: ...


class ClassificationEndpoint(Protocol):
    def submit(
        self,
        wav_base64: str,
        features: AcousticFeatures,
        timeout_s: float,
    ) -> Dict[str, Any]: ...


class Classifier(Protocol):
    def classify(self, sample: AudioSample) -> StressLevel: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_backend(self) -> str: ...

    def get_endpoint_url(self) -> str: ...

    def get_model(self) -> str: ...
