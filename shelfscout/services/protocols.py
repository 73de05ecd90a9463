"""
Protocol definitions for the collaborators the interaction core drives.

Camera, recognizer, TTS, haptics, screen reader and the native guidance
subsystem live outside the core. They are supplied as objects that
follow these protocols, so platform code can be swapped without the
core branching on platform.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from ..interaction.cancel import CancelToken
    from ..schemas.workflow import BackendResponse, Region, WorkflowRequest


@dataclass(frozen=True)
class CapturedPhoto:
    """Reference to a photo produced by the camera collaborator."""
    path: str
    width: int = 0
    height: int = 0
    content_type: str = "image/jpeg"


@runtime_checkable
class PhotoCapture(Protocol):
    """Camera collaborator."""

    async def capture_photo(self) -> Optional[CapturedPhoto]:
        """Take a photo. Returns None on failure."""
        ...


@runtime_checkable
class SpeechSession(Protocol):
    """Platform speech recognizer.

    Recognition events are delivered by the recognizer calling the
    ListeningSession's on_speech_* methods.
    """

    async def start(self, language: str) -> None:
        """Begin recognizing speech."""
        ...

    async def stop(self) -> None:
        """Stop and deliver final results."""
        ...

    async def cancel(self) -> None:
        """Abort without results."""
        ...


@runtime_checkable
class SpeechEngine(Protocol):
    """Protocol for TTS engines."""

    async def speak(self, text: str) -> None:
        """Speak the given text, returning when playback ends."""
        ...

    async def stop_speaking(self) -> None:
        """Stop current playback."""
        ...


@runtime_checkable
class LevelSource(Protocol):
    """Periodic microphone level meter (dB)."""

    def start(self, on_level: Callable[[float], None], interval_ms: int) -> None:
        """Start delivering levels every interval_ms."""
        ...

    def stop(self) -> None:
        """Stop delivering levels."""
        ...


@runtime_checkable
class BackendClient(Protocol):
    """Workflow backend."""

    async def send_request(
        self,
        payload: "WorkflowRequest",
        cancel_token: "CancelToken",
    ) -> "BackendResponse":
        """Send one request; aborts when the token is cancelled."""
        ...


@runtime_checkable
class Haptics(Protocol):
    """Vibration motor. Fire-and-forget."""

    def vibrate(self, pattern: Sequence[int]) -> None:
        ...


@runtime_checkable
class Announcer(Protocol):
    """Screen reader announcements. Fire-and-forget."""

    def announce(self, message: str) -> None:
        ...


@runtime_checkable
class NativeGuidance(Protocol):
    """Platform-native guidance subsystem that can take over a task."""

    async def is_available(self) -> bool:
        ...

    async def start_guidance(self, region: "Region", label: str) -> None:
        ...

    async def stop_guidance(self) -> None:
        ...
