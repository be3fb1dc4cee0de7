"""Console entrypoint: monitor the default microphone and print decisions."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from classifier import StressClassifier
from config import JsonConfigStore, MonitorSettings
from endpoints import DashscopeStressEndpoint, HttpStressEndpoint
from errors import SessionStartError
from escalation import EscalationEngine
from gateway import InterventionGateway
from interfaces import ClassificationEndpoint, ConfigStore
from models import DecisionEvent, InterventionIntent, SessionState, StressLevel
from recorder import SoundDeviceSource
from sampler import AudioSampler
from session_controller import MonitoringSession

logger = logging.getLogger(__name__)


def build_endpoint(backend: str, config_store: ConfigStore) -> ClassificationEndpoint:
    api_key = config_store.get_api_key()
    if backend == "http":
        return HttpStressEndpoint(url=config_store.get_endpoint_url(), api_key=api_key)
    if backend == "dashscope":
        return DashscopeStressEndpoint(api_key=api_key, model=config_store.get_model())
    raise ValueError(f"unknown backend: {backend}")


def build_session(
    settings: MonitorSettings,
    endpoint: ClassificationEndpoint,
    sampler: AudioSampler,
    gateway: InterventionGateway,
) -> MonitoringSession:
    classifier = StressClassifier(
        endpoint,
        request_timeout_s=settings.request_timeout_s,
        retry_backoff_s=settings.retry_backoff_s,
    )
    engine = EscalationEngine(gateway, suppression_window_s=settings.suppression_window_s)
    return MonitoringSession(
        sampler=sampler,
        classifier=classifier,
        engine=engine,
        gateway=gateway,
        debounce_count=settings.debounce_count,
        min_confidence=settings.min_confidence,
        max_consecutive_failures=settings.max_consecutive_failures,
        verdict_timeout_s=settings.request_timeout_s * 2 + settings.retry_backoff_s,
    )


class ConsoleHost:
    """Minimal host: prints what a UI would render."""

    def __init__(self, gateway: InterventionGateway, done: threading.Event) -> None:
        self._done = done
        self._unsubscribers = [
            gateway.on_stress_detected(self._on_stress),
            gateway.on_decision(self._on_decision),
            gateway.on_crisis(self._on_crisis),
            gateway.on_error(self._on_error),
            gateway.on_intent(self._on_intent),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_stress(self, level: StressLevel) -> None:
        reasons = ", ".join(level.indicators) or "no indicators"
        print(f"stress: {level.severity.label} ({level.confidence:.0%}) - {reasons}")

    def _on_decision(self, event: DecisionEvent) -> None:
        print(f"decision: {event.decision.name.lower()}")

    def _on_crisis(self, event: DecisionEvent) -> None:
        print("CRISIS SUPPORT AVAILABLE: you're not alone. Call or text for help now.")

    def _on_error(self, code: str, message: str) -> None:
        print(f"error: {code}: {message}", file=sys.stderr)
        self._done.set()

    def _on_intent(self, intent: InterventionIntent) -> None:
        print(f"intent: {intent.kind.value} {intent.uri}".rstrip())


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Voice stress monitoring")
    parser.add_argument("--backend", choices=("dashscope", "http"), default=None)
    parser.add_argument("--window-ms", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_store = JsonConfigStore(path=args.config)
    settings = config_store.get_settings()
    if args.window_ms:
        settings.window_ms = args.window_ms
    backend = args.backend or config_store.get_backend()

    gateway = InterventionGateway(
        emergency_number=settings.emergency_number,
        crisis_text_number=settings.crisis_text_number,
    )
    sampler = AudioSampler(SoundDeviceSource(), window_ms=settings.window_ms)
    session = build_session(settings, build_endpoint(backend, config_store), sampler, gateway)

    done = threading.Event()
    host = ConsoleHost(gateway, done)
    try:
        session.enable_monitoring()
    except SessionStartError as exc:
        logger.error("%s", exc)
        host.close()
        return 1

    failed = False
    try:
        while not done.wait(timeout=0.5):
            if session.state != SessionState.ACTIVE:
                break
    except KeyboardInterrupt:
        pass
    finally:
        failed = session.state == SessionState.FAILED
        session.disable_monitoring()
        host.close()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
