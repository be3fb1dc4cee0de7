"""Tests for EscalationEngine."""

from __future__ import annotations

from debounce import Debouncer
from escalation import EscalationEngine
from gateway import InterventionGateway
from models import Decision, DecisionEvent, StressSeverity as S

from fakes import level


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _engine(window_s: float = 60.0):
    gateway = InterventionGateway()
    clock = FakeClock()
    crises: list[DecisionEvent] = []
    gateway.on_crisis(crises.append)
    engine = EscalationEngine(gateway, suppression_window_s=window_s, clock=clock)
    return engine, gateway, clock, crises


def test_tier_mapping() -> None:
    engine, *_ = _engine()

    assert engine.tier_for(S.CALM) == Decision.NONE
    assert engine.tier_for(S.MILD) == Decision.NONE
    assert engine.tier_for(S.MODERATE) == Decision.INTERVENE
    assert engine.tier_for(S.SEVERE) == Decision.INTERVENE
    assert engine.tier_for(S.CRISIS) == Decision.CRISIS


def test_verdict_scenario_emits_once_at_index_two() -> None:
    engine, gateway, _, _ = _engine()
    debouncer = Debouncer()
    observed = []
    emitted_at = []

    for index, severity in enumerate([S.MILD, S.MODERATE, S.MODERATE, S.SEVERE, S.SEVERE]):
        before = len(gateway.history())
        detected = debouncer.observe(level(severity))
        if detected is not None:
            engine.update(detected)
        observed.append(engine.current_decision)
        if len(gateway.history()) > before:
            emitted_at.append(index)

    assert observed == [
        Decision.NONE,
        Decision.NONE,
        Decision.INTERVENE,
        Decision.INTERVENE,
        Decision.INTERVENE,
    ]
    assert emitted_at == [2]


def test_repeats_inside_window_are_suppressed_but_crisis_still_notifies() -> None:
    engine, gateway, clock, crises = _engine()

    engine.update(level(S.SEVERE))
    clock.now += 10
    engine.update(level(S.SEVERE))
    clock.now += 10
    engine.update(level(S.SEVERE))

    assert [e.decision for e in gateway.history()] == [Decision.INTERVENE]

    clock.now += 5
    assert engine.update(level(S.CRISIS)) == Decision.CRISIS
    assert len(crises) == 1
    assert [e.decision for e in gateway.history()] == [Decision.INTERVENE, Decision.CRISIS]


def test_new_episode_after_window_expires() -> None:
    engine, gateway, clock, _ = _engine(window_s=60.0)

    engine.update(level(S.MODERATE))
    clock.now += 61
    engine.update(level(S.MODERATE))

    assert len(gateway.history()) == 2


def test_drop_to_calm_resets_suppression() -> None:
    engine, gateway, clock, _ = _engine()

    engine.update(level(S.MODERATE))
    clock.now += 5
    assert engine.update(level(S.MILD)) == Decision.NONE
    assert engine.snapshot().suppressed_until is None
    clock.now += 5
    engine.update(level(S.MODERATE))

    assert len(gateway.history()) == 2


def test_crisis_held_during_window_when_level_steps_down() -> None:
    engine, gateway, clock, _ = _engine()

    engine.update(level(S.CRISIS))
    clock.now += 5
    assert engine.update(level(S.SEVERE)) == Decision.CRISIS

    clock.now += 60
    assert engine.update(level(S.SEVERE)) == Decision.INTERVENE


def test_repeated_crisis_notifies_only_on_transition() -> None:
    engine, _, clock, crises = _engine()

    engine.update(level(S.CRISIS))
    clock.now += 1
    engine.update(level(S.CRISIS))

    assert len(crises) == 1


def test_dismiss_clears_decision_but_keeps_window() -> None:
    engine, gateway, clock, _ = _engine()
    engine.update(level(S.SEVERE))

    gateway.dismiss()

    assert engine.current_decision == Decision.NONE
    assert engine.last_level is None
    clock.now += 5
    assert engine.update(level(S.SEVERE)) == Decision.INTERVENE
    assert len(gateway.history()) == 1


def test_crisis_after_dismiss_notifies_again() -> None:
    engine, gateway, clock, crises = _engine()
    engine.update(level(S.CRISIS))
    gateway.dismiss()
    clock.now += 1

    engine.update(level(S.CRISIS))

    assert len(crises) == 2


def test_crisis_notification_retried_once_then_flagged() -> None:
    gateway = InterventionGateway()
    attempts: list[DecisionEvent] = []

    def broken(event: DecisionEvent) -> None:
        attempts.append(event)
        raise RuntimeError("alert channel down")

    unsubscribe = gateway.on_crisis(broken)
    engine = EscalationEngine(gateway, clock=FakeClock())

    assert engine.update(level(S.CRISIS)) == Decision.CRISIS
    assert len(attempts) == 2
    assert gateway.has_unacknowledged_crisis is True

    unsubscribe()
    delivered: list[DecisionEvent] = []
    gateway.on_crisis(delivered.append)
    assert gateway.foreground() == 0
    assert len(delivered) == 1
    assert gateway.has_unacknowledged_crisis is False


def test_crisis_without_observer_is_flagged() -> None:
    gateway = InterventionGateway()
    engine = EscalationEngine(gateway, clock=FakeClock())

    engine.update(level(S.CRISIS))

    assert gateway.has_unacknowledged_crisis is True
    assert gateway.foreground() == 1


def test_nudge_tier_can_be_configured() -> None:
    gateway = InterventionGateway()
    engine = EscalationEngine(gateway, tiers={S.MILD: Decision.NUDGE}, clock=FakeClock())

    assert engine.update(level(S.MILD)) == Decision.NUDGE
    assert gateway.last_decision().decision == Decision.NUDGE


def test_held_crisis_drops_to_intervene_once_window_expires_through_debouncer() -> None:
    engine, gateway, clock, crises = _engine(window_s=60.0)
    debouncer = Debouncer()

    def feed(severity: S) -> Decision:
        detected = debouncer.observe(level(severity))
        if detected is not None:
            return engine.update(detected)
        return engine.refresh()

    assert feed(S.CRISIS) == Decision.CRISIS
    clock.now += 5
    assert feed(S.SEVERE) == Decision.CRISIS
    assert feed(S.SEVERE) == Decision.CRISIS

    clock.now += 600
    for _ in range(5):
        feed(S.SEVERE)

    assert engine.current_decision == Decision.INTERVENE
    assert [e.decision for e in gateway.history()] == [Decision.CRISIS, Decision.INTERVENE]
    assert len(crises) == 1


def test_refresh_does_nothing_while_window_is_open() -> None:
    engine, _, clock, _ = _engine(window_s=60.0)
    engine.update(level(S.CRISIS))
    clock.now += 5
    engine.update(level(S.SEVERE))

    clock.now += 10
    assert engine.refresh() == Decision.CRISIS
    clock.now += 50
    assert engine.refresh() == Decision.INTERVENE
    assert engine.refresh() == Decision.INTERVENE
