"""
Continuous mode: autonomous capture -> request -> speak cycles.

Once the backend asks for navigation or reaching guidance, the loop keeps
photographing and asking without new speech until the backend says stop,
a safety limit is hit, a photo cannot be taken, or the user interrupts.

Each iteration:
  1. count it and wait loop_delay_ms (stop() cuts the wait short)
  2. rate-limit check: too many iterations or requests too close together
  3. capture a photo
  4. send it through the lifecycle under a fresh cancel token
  5. decide the next action on the new response and speak its text

The stop flag is re-read after every await.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..config import ContinuousModeConfig
from ..exceptions import (
    CaptureFailedError,
    InteractionError,
    RateLimitedError,
    RequestCancelledError,
)
from ..interaction.lifecycle import InteractionLifecycle
from ..schemas.workflow import BackendResponse, WorkflowRequest
from ..services.native_guidance import NativeGuidanceBridge
from ..services.protocols import BackendClient, PhotoCapture
from ..utils.session_id import SessionIdentity
from ..voice.feedback import FeedbackService
from .decision import ActionDecision, Loop, LoopMode, NativeHandoff, determine_action

logger = logging.getLogger("shelfscout.continuous.loop")


class StopReason(str, Enum):
    """Why a loop ended."""
    BACKEND_STOPPED = "backend_stopped"
    RATE_LIMITED = "rate_limited"
    CAPTURE_FAILED = "capture_failed"
    ERROR = "error"
    INTERRUPTED = "interrupted"
    NATIVE_HANDOFF = "native_handoff"
    RESTARTED = "restarted"


@dataclass
class ContinuousModeState:
    """Live state of the running loop. Timestamps are monotonic ms."""
    is_active: bool = False
    mode: Optional[LoopMode] = None
    iteration_count: int = 0
    last_request_timestamp: Optional[float] = None
    loop_delay_ms: int = 0


@dataclass(frozen=True)
class LoopOutcome:
    """How a loop (or a handoff instead of one) ended."""
    reason: StopReason
    iterations: int = 0
    mode: Optional[LoopMode] = None
    error: Optional[BaseException] = None


class _LoopRun:
    """Stop signal for one call to run()."""

    def __init__(self, state: ContinuousModeState) -> None:
        self.state = state
        self.wake = asyncio.Event()
        self.stop_reason: Optional[StopReason] = None

    @property
    def stopped(self) -> bool:
        return self.stop_reason is not None


class ContinuousModeLoop:
    """Drives navigation and reaching loops."""

    def __init__(
        self,
        lifecycle: InteractionLifecycle,
        backend: BackendClient,
        camera: PhotoCapture,
        session: SessionIdentity,
        config: Optional[ContinuousModeConfig] = None,
        feedback: Optional[FeedbackService] = None,
        guidance: Optional[NativeGuidanceBridge] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lifecycle = lifecycle
        self._backend = backend
        self._camera = camera
        self._session = session
        self._config = config or ContinuousModeConfig()
        self._feedback = feedback or FeedbackService()
        self._guidance = guidance
        self._clock = clock

        self._state = ContinuousModeState()
        self._run: Optional[_LoopRun] = None

        lifecycle.register_interrupt_hook(self._on_interrupt)

    @property
    def state(self) -> ContinuousModeState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def guiding_to(self) -> Optional[str]:
        """Label native guidance is leading the user to, if it is running."""
        if self._guidance is None:
            return None
        return self._guidance.active_label

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self, reason: StopReason = StopReason.INTERRUPTED) -> None:
        """Stop the running loop. Safe to call when idle."""
        run = self._run
        if run is None or run.stopped:
            return
        logger.info("Stopping continuous mode: %s", reason.value)
        run.stop_reason = reason
        run.wake.set()
        run.state.is_active = False

    def _on_interrupt(self) -> None:
        self.stop(StopReason.INTERRUPTED)

    async def stop_guidance(self) -> None:
        """End a native guidance session started by a handoff."""
        if self._guidance is not None and self._guidance.active_label is not None:
            logger.info("Stopping native guidance to %s", self._guidance.active_label)
            await self._guidance.stop()

    async def follow(
        self,
        action: ActionDecision,
        response: BackendResponse,
        generation: Optional[int] = None,
    ) -> Optional[LoopOutcome]:
        """Carry out the decision for a response whose text was already spoken.

        Returns None when the interaction simply ends.
        """
        if isinstance(action, NativeHandoff):
            if await self._hand_off(action):
                return LoopOutcome(reason=StopReason.NATIVE_HANDOFF)
            if response.reaching_flag:
                logger.warning("Native guidance unavailable, falling back to reaching loop")
                return await self.run(LoopMode.REACHING, response.loop_delay_ms, generation)
            self._session.observe(response)
            return None

        if isinstance(action, Loop):
            if not self._config.enabled:
                logger.info("Continuous mode disabled, ignoring %s request", action.mode.value)
                return None
            return await self.run(action.mode, action.delay_ms, generation)

        self._session.observe(response)
        return None

    async def run(
        self,
        mode: LoopMode,
        delay_ms: Optional[int] = None,
        generation: Optional[int] = None,
    ) -> LoopOutcome:
        """Run a loop until it stops. Never raises for collaborator failures."""
        if self._run is not None:
            self.stop(StopReason.RESTARTED)

        run = _LoopRun(ContinuousModeState(
            is_active=True,
            mode=mode,
            loop_delay_ms=delay_ms or self._config.default_loop_delay_ms,
        ))
        self._run = run
        self._state = run.state
        logger.info(
            "Continuous mode started: %s (delay=%dms, max=%d)",
            mode.value,
            self._state.loop_delay_ms,
            self._config.max_iterations,
        )

        try:
            outcome = await self._iterate(run, generation)
        except RequestCancelledError:
            outcome = self._outcome(run, run.stop_reason or StopReason.INTERRUPTED)
        except RateLimitedError as e:
            logger.warning("Continuous mode rate limited: %s", e.detail)
            outcome = self._outcome(run, StopReason.RATE_LIMITED, error=e)
        except CaptureFailedError as e:
            logger.error("Photo unusable on iteration %d, stopping loop: %s", run.state.iteration_count, e)
            outcome = self._outcome(run, StopReason.CAPTURE_FAILED, error=e)
        except InteractionError as e:
            logger.error("Continuous mode error: %s", e)
            outcome = self._outcome(run, StopReason.ERROR, error=e)
        except Exception as e:
            logger.error("Continuous mode error: %s", e, exc_info=True)
            outcome = self._outcome(run, StopReason.ERROR, error=e)
        finally:
            run.state.is_active = False
            if self._run is run:
                self._run = None

        if outcome.reason not in (StopReason.NATIVE_HANDOFF, StopReason.ERROR, StopReason.INTERRUPTED):
            self._feedback.play_earcon("cancel")
        logger.info(
            "Continuous mode ended: %s after %d iteration(s)",
            outcome.reason.value,
            outcome.iterations,
        )
        return outcome

    # ------------------------------------------------------------------
    # Loop body
    # ------------------------------------------------------------------

    async def _iterate(self, run: _LoopRun, generation: Optional[int]) -> LoopOutcome:
        state = run.state
        cfg = self._config

        while True:
            if run.stopped:
                return self._outcome(run, run.stop_reason)

            state.iteration_count += 1
            await self._wait(run, state.loop_delay_ms)
            if run.stopped:
                return self._outcome(run, run.stop_reason)

            self._check_rate_limit(state)

            photo = await self._camera.capture_photo()
            if run.stopped:
                return self._outcome(run, run.stop_reason)
            if photo is None:
                logger.error("Photo capture failed on iteration %d, stopping loop", state.iteration_count)
                return self._outcome(run, StopReason.CAPTURE_FAILED)

            state.last_request_timestamp = self._now_ms()
            payload = WorkflowRequest(
                text=cfg.loop_prompt,
                image_path=photo.path,
                image_content_type=photo.content_type,
                navigation=state.mode == LoopMode.NAVIGATION,
                reaching_flag=state.mode == LoopMode.REACHING,
                session_id=self._session.current,
            )
            response = await self._lifecycle.send(
                self._backend,
                payload,
                generation,
                label=f"{state.mode.value} iteration {state.iteration_count}",
            )
            if run.stopped:
                return self._outcome(run, run.stop_reason)

            action = determine_action(response)
            logger.info(
                "Iteration %d: %s (navigation=%s, reaching=%s)",
                state.iteration_count,
                type(action).__name__,
                response.navigation_flag,
                response.reaching_flag,
            )

            if isinstance(action, NativeHandoff):
                await self._speak(run, action.text, generation)
                if run.stopped:
                    return self._outcome(run, run.stop_reason)
                if await self._hand_off(action):
                    return self._outcome(run, StopReason.NATIVE_HANDOFF)
                if not response.reaching_flag:
                    self._session.observe(response)
                    return self._outcome(run, StopReason.BACKEND_STOPPED)
                logger.warning("Native guidance unavailable, continuing reaching loop")
                state.mode = LoopMode.REACHING
                continue

            if not isinstance(action, Loop):
                await self._speak(run, action.text, generation)
                self._session.observe(response)
                return self._outcome(run, run.stop_reason or StopReason.BACKEND_STOPPED)

            if action.mode != state.mode:
                logger.info("Loop mode %s -> %s", state.mode.value, action.mode.value)
                state.mode = action.mode
            if action.delay_ms:
                state.loop_delay_ms = action.delay_ms

            await self._speak(run, action.text, generation)

    def _check_rate_limit(self, state: ContinuousModeState) -> None:
        cfg = self._config
        if state.iteration_count > cfg.max_iterations:
            # The refused iteration never ran
            state.iteration_count -= 1
            raise RateLimitedError(f"max iterations ({cfg.max_iterations}) reached")

        if state.last_request_timestamp is not None:
            interval = self._now_ms() - state.last_request_timestamp
            if interval < cfg.min_request_interval_ms:
                state.iteration_count -= 1
                raise RateLimitedError(
                    f"requests {interval:.0f}ms apart (min {cfg.min_request_interval_ms}ms)"
                )

    async def _wait(self, run: _LoopRun, delay_ms: int) -> None:
        if delay_ms <= 0:
            return
        try:
            await asyncio.wait_for(run.wake.wait(), timeout=delay_ms / 1000.0)
        except asyncio.TimeoutError:
            pass

    async def _speak(self, run: _LoopRun, text: str, generation: Optional[int]) -> None:
        if not text or run.stopped:
            return
        await self._lifecycle.speak(text, generation)

    async def _hand_off(self, action: NativeHandoff) -> bool:
        if self._guidance is None:
            logger.info("No native guidance subsystem configured")
            return False
        return await self._guidance.start(action.region, action.label)

    def _outcome(self, run: _LoopRun, reason: StopReason, error: Optional[BaseException] = None) -> LoopOutcome:
        return LoopOutcome(
            reason=reason,
            iterations=run.state.iteration_count,
            mode=run.state.mode,
            error=error,
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000.0
