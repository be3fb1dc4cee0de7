from __future__ import annotations

import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

import main
from config import JsonConfigStore, MonitorSettings
from endpoints import DashscopeStressEndpoint, HttpStressEndpoint
from gateway import InterventionGateway
from models import DecisionEvent, Decision, EmergencyChannel, SessionState, StressSeverity
from sampler import AudioSampler

from fakes import FakeAudioSource, level


def _store(tmp_path: Path, **data) -> JsonConfigStore:  # noqa: ANN003
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return JsonConfigStore(path=path)


def test_build_endpoint_selects_backend(tmp_path: Path) -> None:
    store = _store(tmp_path, api_key="k", endpoint_url="https://stress.example/classify")

    assert isinstance(main.build_endpoint("http", store), HttpStressEndpoint)
    assert isinstance(main.build_endpoint("dashscope", store), DashscopeStressEndpoint)
    with pytest.raises(ValueError):
        main.build_endpoint("carrier-pigeon", store)


def test_build_session_uses_settings() -> None:
    gateway = InterventionGateway()
    sampler = AudioSampler(FakeAudioSource(), window_ms=3000)

    session = main.build_session(MonitorSettings(), endpoint=object(), sampler=sampler, gateway=gateway)

    assert session.state == SessionState.IDLE
    assert session._verdict_timeout_s == 21.0


def test_console_host_prints_events(capsys) -> None:  # noqa: ANN001
    gateway = InterventionGateway()
    done = threading.Event()
    host = main.ConsoleHost(gateway, done)

    gateway.stress_detected(level(StressSeverity.SEVERE))
    gateway.publish(DecisionEvent(decision=Decision.INTERVENE, level=level(StressSeverity.SEVERE)))
    gateway.request_emergency_contact(EmergencyChannel.CALL, confirmed=True)
    gateway.report_error("DEVICE_LOST")
    host.close()
    gateway.report_error("DEVICE_LOST")

    out, err = capsys.readouterr()
    assert "stress: severe" in out
    assert "decision: intervene" in out
    assert "tel:911" in out
    assert err.count("DEVICE_LOST") == 1
    assert done.is_set()


def test_main_returns_error_when_microphone_denied(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"endpoint_url": "https://stress.example"}), encoding="utf-8")

    with patch("main.SoundDeviceSource", lambda: FakeAudioSource(deny=True)):
        code = main.main(["--backend", "http", "--config", str(path), "--log-level", "ERROR"])

    assert code == 1
