"""
Error taxonomy for the interaction core.

Every failure that can end an interaction is one of these types. Each
carries an ErrorKind so boundaries can decide whether to surface it, and
a user_message spoken or announced when it is surfaced.
"""

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Failure categories."""
    CANCELLED = "cancelled"
    CAPTURE_FAILED = "capture_failed"
    TRANSCRIPTION = "transcription"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class InteractionError(Exception):
    """Base exception for all interaction errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_message = "Something went wrong. Please try again."

    def __init__(self, detail: str = "", user_message: Optional[str] = None):
        self.detail = detail
        self.user_message = user_message or self.default_message
        super().__init__(detail or self.user_message)

    @property
    def is_user_visible(self) -> bool:
        """Whether this failure is reported to the user."""
        return self.kind not in (ErrorKind.CANCELLED, ErrorKind.RATE_LIMITED)


class RequestCancelledError(InteractionError):
    """Raised when in-flight work is abandoned by an interrupt or superseded."""

    kind = ErrorKind.CANCELLED
    default_message = ""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Request cancelled: {reason}", user_message="")


class CaptureFailedError(InteractionError):
    """Raised when the camera returns no photo."""

    kind = ErrorKind.CAPTURE_FAILED
    default_message = "Could not take a photo. Please try again."


class TranscriptionError(InteractionError):
    """Raised when the speech session fails."""

    kind = ErrorKind.TRANSCRIPTION
    default_message = "Voice recognition failed."

    def __init__(self, code: object = None):
        self.code = code
        super().__init__(
            f"Speech recognition error: {code}",
            user_message=describe_speech_error(code),
        )


class BackendError(InteractionError):
    """Base exception for workflow backend failures."""


class BackendNetworkError(BackendError):
    """Raised when the backend cannot be reached."""

    kind = ErrorKind.NETWORK
    default_message = "Network error. Please check your internet connection."


class BackendTimeoutError(BackendError):
    """Raised when the backend does not answer in time."""

    kind = ErrorKind.TIMEOUT
    default_message = "The request timed out. Please try again."


class BackendServerError(BackendError):
    """Raised when the backend answers with an error status."""

    kind = ErrorKind.SERVER
    default_message = "The server had a problem answering. Please try again."

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        super().__init__(detail or f"Backend returned HTTP {status_code}")


class RateLimitedError(InteractionError):
    """Raised when a continuous loop hits its safety limits."""

    kind = ErrorKind.RATE_LIMITED
    default_message = ""

    def __init__(self, detail: str):
        super().__init__(detail, user_message="")


def describe_speech_error(code: object) -> str:
    """Pick the user message for a recognizer error code."""
    if not isinstance(code, str) or not code:
        return "Voice recognition failed. Please try again."

    lowered = code.lower()
    if "permission" in lowered:
        return "Microphone permission denied. Please enable it in Settings."
    if "network" in lowered:
        return "Network error. Please check your internet connection."
    if "timeout" in lowered:
        return "Voice recognition timed out. Please try again."
    if "busy" in lowered or "start_recording" in lowered:
        return "Voice recognition is busy. Please wait and try again."
    if "unavailable" in lowered:
        return "Voice recognition is not available."
    return f"Voice error: {code}. Please try again."


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a collaborator onto an ErrorKind."""
    if isinstance(exc, InteractionError):
        return exc.kind
    if isinstance(exc, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(exc, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorKind.SERVER
    if isinstance(exc, httpx.RequestError):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def as_interaction_error(exc: BaseException) -> InteractionError:
    """Wrap a foreign exception in the InteractionError for its kind."""
    if isinstance(exc, InteractionError):
        return exc
    kind = classify_error(exc)
    if kind == ErrorKind.CANCELLED:
        return RequestCancelledError(str(exc) or "cancelled")
    if kind == ErrorKind.TIMEOUT:
        return BackendTimeoutError(str(exc))
    if kind == ErrorKind.NETWORK:
        return BackendNetworkError(str(exc))
    if kind == ErrorKind.SERVER:
        response = getattr(exc, "response", None)
        return BackendServerError(getattr(response, "status_code", 500), str(exc))
    return InteractionError(str(exc))
