"""Core data models for the stress monitor."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


class StressSeverity(IntEnum):
    CALM = 0
    MILD = 1
    MODERATE = 2
    SEVERE = 3
    CRISIS = 4

    @classmethod
    def parse(cls, label: str) -> "StressSeverity":
        key = str(label).strip().lower()
        if key == "high":
            return cls.SEVERE
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"unknown stress level: {label!r}") from None

    @property
    def label(self) -> str:
        return self.name.lower()


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    ACTIVE = "ACTIVE"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


class Decision(IntEnum):
    NONE = 0
    NUDGE = 1
    INTERVENE = 2
    CRISIS = 3


class EmergencyChannel(str, Enum):
    CALL = "call"
    TEXT = "text"


class IntentKind(str, Enum):
    CONFIRM_EMERGENCY = "confirm_emergency"
    DIAL = "dial"
    SMS = "sms"
    GUIDED_BREATHING = "guided_breathing"
    GUIDE_CONVERSATION = "guide_conversation"


@dataclass(frozen=True)
class StressLevel:
    severity: StressSeverity
    confidence: float
    timestamp_ms: int = field(default_factory=now_ms)
    indicators: Tuple[str, ...] = ()
    emotions: Optional[Dict[str, float]] = None

    def __lt__(self, other: "StressLevel") -> bool:
        return self.severity < other.severity

    def __le__(self, other: "StressLevel") -> bool:
        return self.severity <= other.severity

    def __gt__(self, other: "StressLevel") -> bool:
        return self.severity > other.severity

    def __ge__(self, other: "StressLevel") -> bool:
        return self.severity >= other.severity


@dataclass(frozen=True)
class AudioSample:
    pcm16_bytes: bytes
    duration_ms: int
    captured_at_ms: int = field(default_factory=now_ms)
    sample_rate: int = 16000
    channels: int = 1


@dataclass(frozen=True)
class AcousticFeatures:
    rms: float
    volume: float
    zcr: float
    pitch_hz: float
    spectral_centroid_hz: float
    energy_variance: float
    speech_rate: float
    voice_activity: bool

    @property
    def is_silent(self) -> bool:
        return self.volume < 3.0 or not self.voice_activity


@dataclass(frozen=True)
class EscalationState:
    current_decision: Decision = Decision.NONE
    last_decision_at_ms: Optional[int] = None
    suppressed_until: Optional[float] = None


@dataclass(frozen=True)
class DecisionEvent:
    decision: Decision
    level: StressLevel
    emitted_at_ms: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class InterventionIntent:
    kind: IntentKind
    uri: str = ""
    channel: Optional[EmergencyChannel] = None
    created_at_ms: int = field(default_factory=now_ms)
