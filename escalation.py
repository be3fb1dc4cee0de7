"""Escalation state machine: detected stress level -> intervention decision."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Mapping, Optional

from errors import NotificationError
from gateway import InterventionGateway
from models import Decision, DecisionEvent, EscalationState, StressLevel, StressSeverity, now_ms

logger = logging.getLogger(__name__)

DEFAULT_TIERS: Dict[StressSeverity, Decision] = {
    StressSeverity.CALM: Decision.NONE,
    StressSeverity.MILD: Decision.NONE,
    StressSeverity.MODERATE: Decision.INTERVENE,
    StressSeverity.SEVERE: Decision.INTERVENE,
    StressSeverity.CRISIS: Decision.CRISIS,
}


class EscalationEngine:
    """Turn debounced stress levels into intervention decisions.

    An elevated decision is emitted once per escalation episode.  Within the
    suppression window a repeat of the same or a lower tier stays silent and
    a step down between elevated tiers is held; a higher tier always emits.
    Falling back to ``NONE`` ends the episode.  Every entry into ``CRISIS``
    also notifies the host's crisis observers, whatever the window says.
    """

    def __init__(
        self,
        gateway: InterventionGateway,
        suppression_window_s: float = 60.0,
        tiers: Optional[Mapping[StressSeverity, Decision]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._suppression_window_s = suppression_window_s
        self._tiers = dict(DEFAULT_TIERS)
        if tiers:
            self._tiers.update(tiers)
        self._clock = clock

        self._lock = threading.RLock()
        self._current = Decision.NONE
        self._episode_tier = Decision.NONE
        self._suppressed_until: Optional[float] = None
        self._last_decision_at_ms: Optional[int] = None
        self._last_level: Optional[StressLevel] = None

        gateway.on_dismiss(self.dismiss)

    @property
    def current_decision(self) -> Decision:
        return self._current

    @property
    def last_level(self) -> Optional[StressLevel]:
        return self._last_level

    def snapshot(self) -> EscalationState:
        with self._lock:
            return EscalationState(
                current_decision=self._current,
                last_decision_at_ms=self._last_decision_at_ms,
                suppressed_until=self._suppressed_until,
            )

    def tier_for(self, severity: StressSeverity) -> Decision:
        return self._tiers.get(severity, Decision.NONE)

    def update(self, level: StressLevel) -> Decision:
        with self._lock:
            now = self._clock()
            target = self.tier_for(level.severity)
            self._last_level = level

            if target == Decision.NONE:
                if self._current != Decision.NONE:
                    logger.info("escalation episode ended at %s", level.severity.label)
                self._set_current(Decision.NONE)
                self._episode_tier = Decision.NONE
                self._suppressed_until = None
                return self._current

            in_window = self._suppressed_until is not None and now < self._suppressed_until
            if target < self._current and in_window:
                logger.debug("holding %s during suppression window", self._current.name)
                return self._current

            previous = self._current
            self._set_current(target)
            event = DecisionEvent(decision=target, level=level)

            if target == Decision.CRISIS and previous != Decision.CRISIS:
                self._deliver_crisis(event)

            if target > self._episode_tier or not in_window:
                self._episode_tier = target
                self._suppressed_until = now + self._suppression_window_s
                self._gateway.publish(event)
            else:
                logger.debug("suppressed repeat %s decision", target.name)
            return self._current

    def refresh(self) -> Decision:
        """Re-apply the last level once a held step-down has outlived its window."""
        with self._lock:
            level = self._last_level
            if level is None or self.tier_for(level.severity) >= self._current:
                return self._current
            if self._suppressed_until is not None and self._clock() < self._suppressed_until:
                return self._current
            return self.update(level)

    def dismiss(self) -> None:
        with self._lock:
            self._set_current(Decision.NONE)
            self._last_level = None

    def _set_current(self, decision: Decision) -> None:
        if decision != self._current:
            self._last_decision_at_ms = now_ms()
        self._current = decision

    def _deliver_crisis(self, event: DecisionEvent) -> None:
        for attempt in (1, 2):
            try:
                self._gateway.notify_crisis(event)
                return
            except NotificationError as exc:
                logger.warning("crisis notification attempt %d failed: %s", attempt, exc)
        logger.error(
            "crisis notification undelivered, flagged for next foreground (level %s, confidence %.2f)",
            event.level.severity.label,
            event.level.confidence,
        )
        self._gateway.mark_unacknowledged(event)
