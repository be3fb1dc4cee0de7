"""Observer and command surface between the monitor and the host UI.

The gateway never renders anything and never places a call.  It records
every emitted decision, fans events out to subscribers and hands structured
intents (dial, SMS, breathing exercise, guide chat) to the host, which owns
the actual external action.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from errors import NotificationError, message_for
from models import (
    DecisionEvent,
    EmergencyChannel,
    IntentKind,
    InterventionIntent,
    StressLevel,
)

logger = logging.getLogger(__name__)

DecisionCallback = Callable[[DecisionEvent], None]
StressCallback = Callable[[StressLevel], None]
ErrorCallback = Callable[[str, str], None]
IntentCallback = Callable[[InterventionIntent], None]
Unsubscribe = Callable[[], None]


class InterventionGateway:
    def __init__(self, emergency_number: str = "911", crisis_text_number: str = "741741") -> None:
        self._emergency_number = emergency_number
        self._crisis_text_number = crisis_text_number
        self._lock = threading.RLock()
        self._subscribers: Dict[str, List[Callable]] = {
            "decision": [],
            "stress": [],
            "error": [],
            "crisis": [],
            "intent": [],
            "dismiss": [],
        }
        self._history: List[DecisionEvent] = []
        self._intents: List[InterventionIntent] = []
        self._unacknowledged: List[DecisionEvent] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_decision(self, callback: DecisionCallback) -> Unsubscribe:
        return self._subscribe("decision", callback)

    def on_stress_detected(self, callback: StressCallback) -> Unsubscribe:
        return self._subscribe("stress", callback)

    def on_error(self, callback: ErrorCallback) -> Unsubscribe:
        return self._subscribe("error", callback)

    def on_crisis(self, callback: DecisionCallback) -> Unsubscribe:
        return self._subscribe("crisis", callback)

    def on_intent(self, callback: IntentCallback) -> Unsubscribe:
        return self._subscribe("intent", callback)

    def on_dismiss(self, callback: Callable[[], None]) -> Unsubscribe:
        return self._subscribe("dismiss", callback)

    # ------------------------------------------------------------------
    # Events from the monitor
    # ------------------------------------------------------------------

    def publish(self, event: DecisionEvent) -> None:
        with self._lock:
            self._history.append(event)
        logger.info("decision %s at level %s", event.decision.name, event.level.severity.label)
        self._fan_out("decision", event)

    def stress_detected(self, level: StressLevel) -> None:
        self._fan_out("stress", level)

    def report_error(self, code: str, message: str = "") -> None:
        self._fan_out("error", code, message or message_for(code))

    def notify_crisis(self, event: DecisionEvent) -> None:
        """Deliver a crisis alert; raises NotificationError if nobody took it."""
        callbacks = self._snapshot("crisis")
        if not callbacks:
            raise NotificationError("no crisis observer is subscribed")
        failures = 0
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                failures += 1
                logger.exception("crisis observer failed")
        if failures == len(callbacks):
            raise NotificationError("every crisis observer failed")

    def mark_unacknowledged(self, event: DecisionEvent) -> None:
        with self._lock:
            self._unacknowledged.append(event)

    @property
    def has_unacknowledged_crisis(self) -> bool:
        return bool(self._unacknowledged)

    def foreground(self) -> int:
        """Replay crisis alerts that could not be delivered earlier.

        Returns the number of alerts still pending afterwards.
        """
        with self._lock:
            pending, self._unacknowledged = self._unacknowledged, []
        remaining = []
        for event in pending:
            try:
                self.notify_crisis(event)
            except NotificationError as exc:
                logger.error("crisis replay failed: %s", exc)
                remaining.append(event)
        with self._lock:
            self._unacknowledged = remaining + self._unacknowledged
            return len(self._unacknowledged)

    # ------------------------------------------------------------------
    # Commands from the host
    # ------------------------------------------------------------------

    def dismiss(self) -> None:
        self._fan_out("dismiss")

    def request_emergency_contact(
        self, channel: EmergencyChannel, confirmed: bool = False
    ) -> InterventionIntent:
        channel = EmergencyChannel(channel)
        if not confirmed:
            intent = InterventionIntent(kind=IntentKind.CONFIRM_EMERGENCY, channel=channel)
        elif channel == EmergencyChannel.CALL:
            intent = InterventionIntent(
                kind=IntentKind.DIAL, uri=f"tel:{self._emergency_number}", channel=channel
            )
        else:
            intent = InterventionIntent(
                kind=IntentKind.SMS, uri=f"sms:{self._crisis_text_number}", channel=channel
            )
        return self._dispatch(intent)

    def request_guided_breathing(self) -> InterventionIntent:
        return self._dispatch(InterventionIntent(kind=IntentKind.GUIDED_BREATHING))

    def request_guide_conversation(self) -> InterventionIntent:
        return self._dispatch(InterventionIntent(kind=IntentKind.GUIDE_CONVERSATION))

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def history(self) -> List[DecisionEvent]:
        with self._lock:
            return list(self._history)

    def intents(self) -> List[InterventionIntent]:
        with self._lock:
            return list(self._intents)

    def last_decision(self) -> Optional[DecisionEvent]:
        with self._lock:
            return self._history[-1] if self._history else None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _dispatch(self, intent: InterventionIntent) -> InterventionIntent:
        with self._lock:
            self._intents.append(intent)
        if not self._snapshot("intent"):
            logger.warning("no host handler for intent %s", intent.kind.value)
        self._fan_out("intent", intent)
        return intent

    def _subscribe(self, topic: str, callback: Callable) -> Unsubscribe:
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subscribers[topic].remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def _snapshot(self, topic: str) -> List[Callable]:
        with self._lock:
            return list(self._subscribers[topic])

    def _fan_out(self, topic: str, *args: object) -> None:
        for callback in self._snapshot(topic):
            try:
                callback(*args)
            except Exception:
                logger.exception("%s observer failed", topic)
