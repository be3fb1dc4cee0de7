"""State-machine based monitoring session orchestration."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional

from debounce import Debouncer
from errors import (
    AcquireError,
    ClassifierTimeoutError,
    ClassifyError,
    DeviceBusyError,
    DeviceLostError,
    MonitorError,
    RepeatedClassifyFailureError,
    SessionStartError,
    message_for,
)
from escalation import EscalationEngine
from gateway import InterventionGateway
from interfaces import Classifier
from models import SessionState, StressLevel, now_ms
from sampler import AudioSampler, SamplerHandle

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]

_RUNNING_STATES = (SessionState.STARTING, SessionState.ACTIVE, SessionState.STOPPING)


class MonitoringSession:
    """Links the sampler, the classifier and the escalation engine.

    One background thread per enabled session pulls samples, submits them to
    a single-worker executor and feeds verdicts through the debouncer into the
    engine.  That thread is the only writer of debounce state; dismissals from
    the host are picked up before the next verdict is handled.
    """

    def __init__(
        self,
        sampler: AudioSampler,
        classifier: Classifier,
        engine: EscalationEngine,
        gateway: InterventionGateway,
        debounce_count: int = 2,
        min_confidence: float = 0.3,
        max_consecutive_failures: int = 3,
        max_device_losses: int = 2,
        verdict_timeout_s: Optional[float] = None,
        poll_interval_s: float = 0.1,
        join_timeout_s: float = 1.0,
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self._sampler = sampler
        self._classifier = classifier
        self._engine = engine
        self._gateway = gateway
        self._max_consecutive_failures = max_consecutive_failures
        self._max_device_losses = max_device_losses
        self._verdict_timeout_s = verdict_timeout_s
        self._poll_interval_s = poll_interval_s
        self._join_timeout_s = join_timeout_s
        self._on_state_change = on_state_change

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session_id = ""
        self._started_at_ms: Optional[int] = None
        self._last_verdict: Optional[StressLevel] = None
        self._debouncer = Debouncer(required=debounce_count, min_confidence=min_confidence)
        self._handle: Optional[SamplerHandle] = None
        self._stop_event = threading.Event()
        self._dismiss_requested = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._unsubscribe_dismiss: Optional[Callable[[], None]] = None
        self._failure: Optional[MonitorError] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def started_at_ms(self) -> Optional[int]:
        return self._started_at_ms

    @property
    def last_verdict(self) -> Optional[StressLevel]:
        return self._last_verdict

    @property
    def detected_level(self) -> StressLevel | None:
        return self._engine.last_level

    @property
    def consecutive_count(self) -> int:
        return self._debouncer.streak

    @property
    def failure(self) -> Optional[MonitorError]:
        """Why the last session ended in FAILED, cleared by the next start."""
        return self._failure

    def enable_monitoring(self) -> None:
        with self._lock:
            if self._state in _RUNNING_STATES:
                raise DeviceBusyError("a monitoring session is already running")
            self._session_id = uuid.uuid4().hex
            self._stop_event = threading.Event()
            self._dismiss_requested.clear()
            self._debouncer.reset()
            self._last_verdict = None
            self._failure = None
            self._transition(SessionState.STARTING)
            try:
                handle = self._sampler.acquire()
            except AcquireError as exc:
                logger.warning("monitoring start failed: %s", exc)
                self._fail(exc)
                raise SessionStartError(f"unable to start monitoring: {exc}") from exc

            self._handle = handle
            self._started_at_ms = now_ms()
            self._unsubscribe_dismiss = self._gateway.on_dismiss(self._dismiss_requested.set)
            self._transition(SessionState.ACTIVE)
            self._thread = threading.Thread(
                target=self._run,
                args=(self._session_id, self._stop_event),
                name=f"stress-monitor-{self._session_id[:8]}",
                daemon=True,
            )
            self._thread.start()
            logger.info("voice stress monitoring started (session %s)", self._session_id)

    def disable_monitoring(self) -> None:
        with self._lock:
            if self._state == SessionState.STOPPED:
                return
            thread = self._thread
            if self._state == SessionState.ACTIVE:
                self._transition(SessionState.STOPPING)
            self._stop_event.set()
            self._teardown()
            self._transition(SessionState.STOPPED)
            logger.info("voice stress monitoring stopped (session %s)", self._session_id)

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout_s)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self, session_id: str, stop_event: threading.Event) -> None:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stress-classify")
        failures = 0
        losses = 0
        last_error: Optional[BaseException] = None
        try:
            while not stop_event.is_set():
                handle = self._handle
                if handle is None:
                    return
                try:
                    sample = self._sampler.next_sample(handle)
                except DeviceLostError as exc:
                    if stop_event.is_set():
                        return
                    losses += 1
                    logger.warning("audio device lost (%d/%d): %s", losses, self._max_device_losses, exc)
                    if losses >= self._max_device_losses or not self._reacquire(session_id, handle):
                        self._fail_from_worker(session_id, exc)
                        return
                    continue
                losses = 0
                if stop_event.is_set():
                    return

                future = executor.submit(self._classifier.classify, sample)
                del sample
                try:
                    verdict = self._await_verdict(future, stop_event)
                except ClassifyError as exc:
                    failures += 1
                    last_error = exc
                    logger.warning(
                        "classification failed (%d/%d): %s",
                        failures,
                        self._max_consecutive_failures,
                        exc,
                    )
                except Exception as exc:  # pragma: no cover
                    failures += 1
                    last_error = exc
                    logger.exception("unexpected classifier error")
                else:
                    if verdict is None:
                        return
                    failures = 0
                    self._handle_verdict(session_id, verdict)
                    continue

                if failures >= self._max_consecutive_failures:
                    error = RepeatedClassifyFailureError(
                        f"{failures} consecutive classification failures"
                    )
                    error.__cause__ = last_error
                    self._fail_from_worker(session_id, error)
                    return
        finally:
            executor.shutdown(wait=False)

    def _await_verdict(self, future: Future, stop_event: threading.Event) -> Optional[StressLevel]:
        deadline = None
        if self._verdict_timeout_s is not None:
            deadline = time.monotonic() + self._verdict_timeout_s
        while not stop_event.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                future.cancel()
                raise ClassifierTimeoutError(f"no verdict within {self._verdict_timeout_s:.1f}s")
            try:
                return future.result(timeout=self._poll_interval_s)
            except FutureTimeout:
                continue
        future.cancel()
        return None

    def _handle_verdict(self, session_id: str, verdict: StressLevel) -> None:
        with self._lock:
            if session_id != self._session_id or self._state != SessionState.ACTIVE:
                logger.debug("discarding late verdict for session %s", session_id)
                return
            self._last_verdict = verdict
            if self._dismiss_requested.is_set():
                self._dismiss_requested.clear()
                self._debouncer.reset()
            detected = self._debouncer.observe(verdict)
            if detected is None:
                self._engine.refresh()
                return
            self._gateway.stress_detected(detected)
            self._engine.update(detected)

    def _reacquire(self, session_id: str, lost: SamplerHandle) -> bool:
        with self._lock:
            if session_id != self._session_id or self._state != SessionState.ACTIVE:
                return False
            self._sampler.release(lost)
            try:
                self._handle = self._sampler.acquire()
            except AcquireError as exc:
                logger.warning("audio re-acquisition failed: %s", exc)
                self._handle = None
                return False
            return True

    def _fail_from_worker(self, session_id: str, error: MonitorError) -> None:
        with self._lock:
            if session_id != self._session_id or self._state != SessionState.ACTIVE:
                return
            self._stop_event.set()
            self._fail(error)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fail(self, error: MonitorError) -> None:
        self._failure = error
        self._teardown()
        self._transition(SessionState.FAILED)
        self._gateway.report_error(error.code, message_for(error.code))

    def _teardown(self) -> None:
        if self._unsubscribe_dismiss is not None:
            self._unsubscribe_dismiss()
            self._unsubscribe_dismiss = None
        handle, self._handle = self._handle, None
        self._sampler.release(handle)
        self._thread = None

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("session %s: %s -> %s", self._session_id[:8], from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
