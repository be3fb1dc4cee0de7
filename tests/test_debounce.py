from __future__ import annotations

from debounce import Debouncer
from models import StressSeverity as S

from fakes import level


def _feed(debouncer: Debouncer, *severities: S) -> list:
    return [debouncer.observe(level(s)) for s in severities]


def test_change_needs_two_consecutive_verdicts() -> None:
    debouncer = Debouncer()

    first, second = _feed(debouncer, S.MODERATE, S.MODERATE)

    assert first is None
    assert second is not None and second.severity == S.MODERATE
    assert debouncer.detected == S.MODERATE


def test_single_fluctuation_does_not_flip() -> None:
    debouncer = Debouncer()

    assert _feed(debouncer, S.MODERATE, S.CALM, S.MODERATE, S.CALM) == [None] * 4
    assert debouncer.detected == S.CALM


def test_mixed_higher_verdicts_confirm_the_lower_of_the_pair() -> None:
    debouncer = Debouncer()

    results = _feed(debouncer, S.MODERATE, S.SEVERE)

    assert results[1].severity == S.MODERATE


def test_crisis_bypasses_debounce() -> None:
    debouncer = Debouncer()

    forwarded = debouncer.observe(level(S.CRISIS))

    assert forwarded is not None and forwarded.severity == S.CRISIS


def test_level_falls_after_two_lower_verdicts() -> None:
    debouncer = Debouncer()
    _feed(debouncer, S.SEVERE, S.SEVERE)

    results = _feed(debouncer, S.CALM, S.MILD)

    assert results[0] is None
    assert results[1].severity == S.MILD


def test_untrusted_verdicts_are_ignored() -> None:
    debouncer = Debouncer(min_confidence=0.5)

    assert debouncer.observe(level(S.SEVERE, confidence=0.2)) is None
    assert debouncer.observe(level(S.SEVERE, confidence=0.9)) is None
    assert debouncer.observe(level(S.SEVERE, confidence=0.9)).severity == S.SEVERE


def test_streak_and_reset() -> None:
    debouncer = Debouncer(required=3)
    _feed(debouncer, S.MODERATE, S.SEVERE)

    assert debouncer.streak == 2

    debouncer.reset()
    assert debouncer.streak == 0
    assert debouncer.detected == S.CALM
