"""
Shared fakes for the platform collaborators.

The fakes record every call so tests can assert on ordering, and can be
told to block until released so a test can interrupt mid-await.
"""

import asyncio
from typing import Callable, Optional

import pytest

from shelfscout.config import (
    ContinuousModeConfig,
    InterruptConfig,
    ListeningConfig,
    VADConfig,
)
from shelfscout.continuous.loop import ContinuousModeLoop
from shelfscout.interaction.controller import InteractionController
from shelfscout.interaction.lifecycle import InteractionLifecycle
from shelfscout.schemas.workflow import BackendResponse
from shelfscout.services.native_guidance import NativeGuidanceBridge
from shelfscout.services.protocols import CapturedPhoto
from shelfscout.utils.session_id import SessionIdentity
from shelfscout.voice.eou import EndOfUtteranceArbitrator
from shelfscout.voice.feedback import FeedbackService
from shelfscout.voice.listening import ListeningSession
from shelfscout.voice.platform import resolve_capabilities
from shelfscout.voice.playback import PlaybackController


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeSpeechSession:
    def __init__(self, start_error: Optional[Exception] = None, cancel_error: Optional[Exception] = None):
        self.calls: list[str] = []
        self.start_error = start_error
        self.cancel_error = cancel_error

    async def start(self, language: str) -> None:
        self.calls.append(f"start:{language}")
        if self.start_error is not None:
            raise self.start_error

    async def stop(self) -> None:
        self.calls.append("stop")

    async def cancel(self) -> None:
        self.calls.append("cancel")
        if self.cancel_error is not None:
            raise self.cancel_error


class FakeTTS:
    def __init__(self, block: bool = False):
        self.spoken: list[str] = []
        self.stops = 0
        self.block = block
        self.release = asyncio.Event()

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.block:
            await self.release.wait()
        else:
            await asyncio.sleep(0)

    async def stop_speaking(self) -> None:
        self.stops += 1


class FakeCamera:
    """Returns queued results; a missing queue entry means a good photo."""

    def __init__(self, results: Optional[list] = None, block: bool = False):
        self.results = list(results or [])
        self.calls = 0
        self.block = block
        self.release = asyncio.Event()

    async def capture_photo(self) -> Optional[CapturedPhoto]:
        self.calls += 1
        if self.block:
            await self.release.wait()
        if self.results:
            return self.results.pop(0)
        return CapturedPhoto(path=f"/tmp/photo-{self.calls}.jpg", width=640, height=480)


class FakeBackend:
    """Answers with queued responses (dicts, BackendResponse or exceptions)."""

    def __init__(self, responses: Optional[list] = None, block: bool = False):
        self.responses = list(responses or [])
        self.payloads = []
        self.tokens = []
        self.block = block
        self.release = asyncio.Event()

    async def send_request(self, payload, cancel_token) -> BackendResponse:
        self.payloads.append(payload)
        self.tokens.append(cancel_token)
        if self.block:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        item = self.responses.pop(0) if self.responses else {"text": ""}
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, BackendResponse):
            return item
        return BackendResponse.model_validate(item)


class RecordingHaptics:
    def __init__(self):
        self.patterns: list[list[int]] = []

    def vibrate(self, pattern) -> None:
        self.patterns.append(list(pattern))


class RecordingAnnouncer:
    def __init__(self):
        self.messages: list[str] = []

    def announce(self, message: str) -> None:
        self.messages.append(message)


class FakeGuidance:
    def __init__(self, available: bool = True, start_error: Optional[Exception] = None):
        self.available = available
        self.start_error = start_error
        self.started: list[tuple] = []
        self.stopped = 0

    async def is_available(self) -> bool:
        return self.available

    async def start_guidance(self, region, label) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started.append((region, label))

    async def stop_guidance(self) -> None:
        self.stopped += 1


# ---------------------------------------------------------------------------
# Assistant assembly
# ---------------------------------------------------------------------------

class Assistant:
    """Everything a controller test needs to poke at."""

    def __init__(
        self,
        backend: FakeBackend,
        camera: Optional[FakeCamera] = None,
        tts: Optional[FakeTTS] = None,
        speech: Optional[FakeSpeechSession] = None,
        guidance: Optional[FakeGuidance] = None,
        continuous: Optional[ContinuousModeConfig] = None,
        clock: Optional[FakeClock] = None,
        listening: Optional[ListeningConfig] = None,
    ):
        self.backend = backend
        self.camera = camera or FakeCamera()
        self.tts = tts or FakeTTS()
        self.speech = speech or FakeSpeechSession()
        self.haptics = RecordingHaptics()
        self.announcer = RecordingAnnouncer()
        self.guidance = guidance or FakeGuidance(available=False)

        self.feedback = FeedbackService(haptics=self.haptics, announcer=self.announcer)
        capabilities = resolve_capabilities("generic", VADConfig(), has_level_source=False)
        self.arbitrator = EndOfUtteranceArbitrator()
        self.listening = ListeningSession(
            self.speech,
            self.arbitrator,
            capabilities,
            config=listening or ListeningConfig(restart_delay_ms=0),
        )
        self.playback = PlaybackController(self.tts)
        self.lifecycle = InteractionLifecycle(
            InterruptConfig(settle_delay_ms=0),
            playback=self.playback,
            listening=self.listening,
        )
        self.session = SessionIdentity()
        self.loop = ContinuousModeLoop(
            self.lifecycle,
            self.backend,
            self.camera,
            self.session,
            config=continuous or ContinuousModeConfig(
                default_loop_delay_ms=0,
                min_request_interval_ms=0,
                max_iterations=10,
            ),
            feedback=self.feedback,
            guidance=NativeGuidanceBridge(self.guidance, self.feedback),
            clock=clock or FakeClock(),
        )
        self.controller = InteractionController(
            self.lifecycle,
            self.listening,
            self.backend,
            self.camera,
            self.loop,
            self.session,
            feedback=self.feedback,
        )


@pytest.fixture
def make_assistant():
    return Assistant
