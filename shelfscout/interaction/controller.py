"""
Interaction controller: one tap button driving the whole assistant.

    ready     --tap--> listening
    listening --tap--> manual stop, submit         (or auto-submit on EOU)
    thinking  --tap--> interrupt -> ready
    speaking  --tap--> interrupt -> ready

A submitted utterance runs as one processing task: photo -> request ->
speak -> continuous mode if the backend asks for it. Every failure is
caught here; cancelled work ends quietly, anything else is reported once
and leaves the controller ready.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..continuous.decision import Loop, NativeHandoff, determine_action
from ..continuous.loop import ContinuousModeLoop, LoopOutcome, StopReason
from ..exceptions import (
    CaptureFailedError,
    InteractionError,
    RequestCancelledError,
    TranscriptionError,
    as_interaction_error,
)
from ..schemas.workflow import WorkflowRequest
from ..services.protocols import BackendClient, PhotoCapture
from ..utils.session_id import SessionIdentity
from ..voice.feedback import PROCESSING_MESSAGE, FeedbackService
from ..voice.listening import ListeningSession
from .lifecycle import InteractionLifecycle, InteractionState

logger = logging.getLogger("shelfscout.interaction.controller")

StateListener = Callable[[InteractionState], None]


class InteractionController:
    """Routes taps and submissions through the lifecycle."""

    def __init__(
        self,
        lifecycle: InteractionLifecycle,
        listening: ListeningSession,
        backend: BackendClient,
        camera: PhotoCapture,
        loop: ContinuousModeLoop,
        session: SessionIdentity,
        feedback: Optional[FeedbackService] = None,
    ):
        self.lifecycle = lifecycle
        self.listening = listening
        self.backend = backend
        self.camera = camera
        self.loop = loop
        self.session = session
        self.feedback = feedback or FeedbackService()

        self._state = InteractionState.READY
        self._task: Optional[asyncio.Task] = None
        self._listeners: list[StateListener] = []

        listening.arbitrator.set_submit_callback(self._on_auto_submit)
        listening.set_error_handler(self._on_transcription_error)
        lifecycle.register_reset_callback(self._on_reset)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self.lifecycle.is_processing

    @property
    def is_speaking(self) -> bool:
        return self.lifecycle.is_speaking

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: InteractionState, generation: Optional[int] = None) -> None:
        if generation is not None and not self.lifecycle.is_current(generation):
            return
        if state == self._state:
            return
        logger.info("State: %s -> %s", self._state.value, state.value)
        self._state = state
        self.feedback.play_earcon(state.value)
        self.feedback.announce_state(state.value)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("State listener failed: %s", e)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def handle_tap(self) -> None:
        """Single tap: start listening, stop and submit, or interrupt."""
        if self.lifecycle.is_interrupted:
            logger.debug("Tap ignored during interrupt cleanup")
            return

        if self._state == InteractionState.READY:
            await self.start_listening()
        elif self._state == InteractionState.LISTENING:
            await self.stop_listening()
        else:
            await self.interrupt()

    async def start_listening(self) -> None:
        self._set_state(InteractionState.LISTENING)
        try:
            started = await self.listening.start()
        except TranscriptionError as e:
            self._report(e)
            self._set_state(InteractionState.READY)
            return
        if not started:
            logger.info("Listening ended before the recognizer came up (%s)", self._state.value)
        elif self._state != InteractionState.LISTENING:
            await self.listening.cancel()

    async def stop_listening(self) -> None:
        """Manual stop. Submits directly, bypassing auto-submit."""
        transcript = await self.listening.stop()
        if transcript is None:
            return
        if not transcript:
            logger.info("Manual stop with empty transcript")
            self._set_state(InteractionState.READY)
            return
        self._submit(transcript, from_recognizer=False)

    async def interrupt(self) -> None:
        """Emergency stop from any state."""
        self.feedback.play_earcon("cancel")
        await self.lifecycle.interrupt()
        await self.loop.stop_guidance()
        self._set_state(InteractionState.READY)

    async def process_utterance(self, transcript: str) -> None:
        """Submit a transcript directly and wait for the interaction to end."""
        self._submit(transcript, from_recognizer=False)
        await self.wait_until_idle()

    async def wait_until_idle(self) -> None:
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _on_auto_submit(self, transcript: str) -> None:
        self.feedback.announce(PROCESSING_MESSAGE)
        self._submit(transcript, from_recognizer=True)

    def _submit(self, transcript: str, from_recognizer: bool) -> None:
        generation = self.lifecycle.begin()
        self._set_state(InteractionState.THINKING)
        self._task = asyncio.ensure_future(
            self._process(transcript, generation, from_recognizer)
        )

    async def _process(self, transcript: str, generation: int, from_recognizer: bool) -> None:
        try:
            if from_recognizer:
                await self.listening.finish()
            outcome = await self._run_request(transcript, generation)
            if outcome is not None and outcome.reason == StopReason.ERROR and outcome.error is not None:
                self._report(outcome.error)
        except RequestCancelledError as e:
            logger.info("Request cancelled: %s", e.reason)
        except InteractionError as e:
            if self.lifecycle.is_current(generation):
                self._report(e)
        except Exception as e:
            logger.error("Unexpected error processing request: %s", e, exc_info=True)
            if self.lifecycle.is_current(generation):
                self._report(e)
        finally:
            if self.lifecycle.finish(generation):
                self._set_state(InteractionState.READY)

    async def _run_request(self, transcript: str, generation: int) -> Optional[LoopOutcome]:
        self.lifecycle.ensure_active(generation)
        photo = await self.camera.capture_photo()
        self.lifecycle.ensure_active(generation)
        if photo is None:
            raise CaptureFailedError("Camera returned no photo")

        payload = WorkflowRequest(
            text=transcript,
            image_path=photo.path,
            image_content_type=photo.content_type,
            session_id=self.session.current,
        )
        response = await self.lifecycle.send(self.backend, payload, generation)
        action = determine_action(response)

        if action.text:
            self._set_state(InteractionState.SPEAKING, generation)
            await self.lifecycle.speak(action.text, generation)

        if isinstance(action, (Loop, NativeHandoff)):
            self._set_state(InteractionState.THINKING, generation)
        return await self.loop.follow(action, response, generation)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_transcription_error(self, error: TranscriptionError) -> None:
        if self._state != InteractionState.LISTENING:
            logger.debug("Ignoring recognizer error outside listening: %s", error)
            return
        self._report(error)
        self._set_state(InteractionState.READY)

    def _on_reset(self) -> None:
        self.listening.arbitrator.clear_transcript()
        self._set_state(InteractionState.READY)

    def _report(self, error: BaseException) -> None:
        """Surface one failure to the user."""
        error = as_interaction_error(error)
        if not error.is_user_visible:
            logger.info("Not reporting %s: %s", error.kind.value, error)
            return
        logger.error("Interaction failed (%s): %s", error.kind.value, error)
        self.feedback.play_earcon("error")
        self.feedback.announce_error(error.user_message)

    async def close(self) -> None:
        """Stop everything for shutdown."""
        if self._state != InteractionState.READY or self.loop.is_active or self.loop.guiding_to:
            await self.interrupt()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
