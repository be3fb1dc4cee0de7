"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_BUSY = "DEVICE_BUSY"
DEVICE_LOST = "DEVICE_LOST"
INVALID_INPUT = "INVALID_INPUT"
CLASSIFIER_UNAVAILABLE = "CLASSIFIER_UNAVAILABLE"
CLASSIFIER_TIMEOUT = "CLASSIFIER_TIMEOUT"
CLASSIFIER_PROTOCOL_ERROR = "CLASSIFIER_PROTOCOL_ERROR"
AUTH_FAILED = "AUTH_FAILED"
NETWORK_ERROR = "NETWORK_ERROR"
START_FAILED = "START_FAILED"
REPEATED_CLASSIFY_FAILURE = "REPEATED_CLASSIFY_FAILURE"
NOTIFICATION_FAILED = "NOTIFICATION_FAILED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: (
        "Microphone permission is required for stress monitoring. "
        "Check your microphone permissions and try again."
    ),
    DEVICE_BUSY: "The microphone is already in use by another monitoring session.",
    DEVICE_LOST: "The microphone stopped delivering audio. Reconnect it and try again.",
    INVALID_INPUT: "The captured audio sample is empty or malformed.",
    CLASSIFIER_UNAVAILABLE: "Stress analysis is temporarily unavailable.",
    CLASSIFIER_TIMEOUT: "Stress analysis timed out.",
    CLASSIFIER_PROTOCOL_ERROR: "Stress analysis response format is invalid.",
    AUTH_FAILED: "API key is invalid.",
    NETWORK_ERROR: "Network failed, please retry.",
    START_FAILED: "Unable to start voice monitoring.",
    REPEATED_CLASSIFY_FAILURE: (
        "Voice monitoring stopped because stress analysis failed repeatedly. "
        "Check your network connection and try again."
    ),
    NOTIFICATION_FAILED: "A crisis alert could not be delivered.",
}


def message_for(code: str) -> str:
    return ERROR_MESSAGES.get(code, code)


class MonitorError(Exception):
    code = START_FAILED

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or message_for(self.code))


class AcquireError(MonitorError):
    """The audio resource could not be acquired or was lost."""


class PermissionDeniedError(AcquireError):
    code = PERMISSION_DENIED


class DeviceBusyError(AcquireError):
    code = DEVICE_BUSY


class DeviceLostError(AcquireError):
    code = DEVICE_LOST


class ClassifyError(MonitorError):
    code = CLASSIFIER_UNAVAILABLE
    retryable = False

    def __init__(
        self,
        message: str = "",
        code: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, code)
        if retryable is not None:
            self.retryable = retryable


class InvalidInputError(ClassifyError):
    code = INVALID_INPUT


class ClassifierUnavailableError(ClassifyError):
    code = CLASSIFIER_UNAVAILABLE


class ClassifierTimeoutError(ClassifyError):
    code = CLASSIFIER_TIMEOUT
    retryable = True


class SessionError(MonitorError):
    pass


class SessionStartError(SessionError):
    code = START_FAILED


class RepeatedClassifyFailureError(SessionError):
    code = REPEATED_CLASSIFY_FAILURE


class NotificationError(MonitorError):
    code = NOTIFICATION_FAILED
