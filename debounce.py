"""Smoothing of raw classifier verdicts into a stable detected level."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

from models import StressLevel, StressSeverity

logger = logging.getLogger(__name__)


class Debouncer:
    """Forward a level change only once it has held for ``required`` verdicts.

    The window holds the most recent trusted verdicts.  When every verdict in
    it sits above the detected level, the detected level rises to the lowest
    of them; when every verdict sits below, it falls to the highest.  Crisis
    verdicts are forwarded at once.
    """

    def __init__(self, required: int = 2, min_confidence: float = 0.3) -> None:
        if required < 1:
            raise ValueError("required must be at least 1")
        self.required = required
        self.min_confidence = min_confidence
        self._window: Deque[StressLevel] = deque(maxlen=required)
        self._detected = StressSeverity.CALM

    @property
    def detected(self) -> StressSeverity:
        return self._detected

    @property
    def streak(self) -> int:
        """Consecutive recent verdicts on the same side of the detected level."""
        count = 0
        direction = 0
        for verdict in reversed(self._window):
            side = (verdict.severity > self._detected) - (verdict.severity < self._detected)
            if side == 0 or (direction and side != direction):
                break
            direction = side
            count += 1
        return count

    def reset(self) -> None:
        self._window.clear()
        self._detected = StressSeverity.CALM

    def observe(self, verdict: StressLevel) -> Optional[StressLevel]:
        """Feed one verdict; return the new detected level if it changed."""
        if verdict.confidence < self.min_confidence:
            logger.debug(
                "ignoring untrusted %s verdict (confidence %.2f)",
                verdict.severity.label,
                verdict.confidence,
            )
            return None

        self._window.append(verdict)
        if verdict.severity == StressSeverity.CRISIS:
            return self._forward(verdict)
        if len(self._window) < self.required:
            return None

        lowest = min(self._window, key=lambda v: v.severity)
        highest = max(self._window, key=lambda v: v.severity)
        if lowest.severity > self._detected:
            return self._forward(lowest)
        if highest.severity < self._detected:
            return self._forward(highest)
        return None

    def _forward(self, verdict: StressLevel) -> Optional[StressLevel]:
        if verdict.severity == self._detected:
            return None
        logger.info("detected level %s -> %s", self._detected.label, verdict.severity.label)
        self._detected = verdict.severity
        return verdict
