"""
Request lifecycle and emergency stop.

InteractionLifecycle is the one context object for "the active
request/response/playback chain". It owns the cancel token of the
outstanding request and the interrupt protocol.

All mutations happen synchronously between awaits. Work that spans an
await captures the generation returned by begin() and calls
ensure_active() after resuming; an interrupt bumps the generation, so
work from before the interrupt can never take effect afterwards even
once is_interrupted has been cleared again.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..config import InterruptConfig
from ..exceptions import RequestCancelledError
from .cancel import CancelToken

if TYPE_CHECKING:
    from ..schemas.workflow import BackendResponse, WorkflowRequest
    from ..services.protocols import BackendClient
    from ..voice.listening import ListeningSession
    from ..voice.playback import PlaybackController

logger = logging.getLogger("shelfscout.interaction.lifecycle")


class InteractionState(str, Enum):
    """User-facing interaction states."""
    READY = "ready"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class InteractionLifecycle:
    """Owns the cancel token and the interrupt protocol."""

    def __init__(
        self,
        config: Optional[InterruptConfig] = None,
        playback: Optional["PlaybackController"] = None,
        listening: Optional["ListeningSession"] = None,
    ):
        self._config = config or InterruptConfig()
        self._playback = playback
        self._listening = listening

        self._cancel_token: Optional[CancelToken] = None
        self._is_processing = False
        self._is_interrupted = False
        self._generation = 0
        self._hooks: list[Callable[[], Any]] = []
        self._reset_callbacks: list[Callable[[], Any]] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def cancel_token(self) -> Optional[CancelToken]:
        return self._cancel_token

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def is_interrupted(self) -> bool:
        return self._is_interrupted

    @property
    def is_speaking(self) -> bool:
        return self._playback is not None and self._playback.is_speaking

    @property
    def generation(self) -> int:
        return self._generation

    def attach(
        self,
        playback: Optional["PlaybackController"] = None,
        listening: Optional["ListeningSession"] = None,
    ) -> None:
        if playback is not None:
            self._playback = playback
        if listening is not None:
            self._listening = listening

    def register_interrupt_hook(self, hook: Callable[[], Any]) -> None:
        """Call hook() synchronously when an interrupt begins."""
        self._hooks.append(hook)

    def register_reset_callback(self, callback: Callable[[], Any]) -> None:
        """Call callback() when an interrupt resets processing state."""
        self._reset_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Request chain
    # ------------------------------------------------------------------

    def begin(self) -> int:
        """Mark the start of a request chain. Returns its generation."""
        self._generation += 1
        self._is_processing = True
        logger.debug("Begin processing (generation %d)", self._generation)
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._is_interrupted

    def ensure_active(self, generation: Optional[int] = None) -> None:
        """Raise RequestCancelledError if the chain was interrupted or superseded."""
        if self._is_interrupted:
            raise RequestCancelledError("interrupted")
        if generation is not None and generation != self._generation:
            raise RequestCancelledError("superseded")

    def open_request(self, label: str = "request") -> CancelToken:
        """Issue the token for a new outbound request.

        A token still outstanding belongs to superseded work and is
        cancelled first, so at most one token is ever live.
        """
        if self._cancel_token is not None:
            self._cancel_token.cancel("superseded")
        token = CancelToken(label)
        self._cancel_token = token
        return token

    def close_request(self, token: CancelToken) -> None:
        if self._cancel_token is token:
            self._cancel_token = None

    async def send(
        self,
        client: "BackendClient",
        payload: "WorkflowRequest",
        generation: Optional[int] = None,
        label: str = "request",
    ) -> "BackendResponse":
        """Send one request under a fresh token.

        Checks validity before issuing the call and again after the
        response arrives.
        """
        self.ensure_active(generation)
        token = self.open_request(label)
        try:
            response = await token.run(client.send_request(payload, token))
        finally:
            self.close_request(token)
        self.ensure_active(generation)
        return response

    async def speak(self, text: str, generation: Optional[int] = None) -> bool:
        """Play text unless the chain is stale. Returns True if it played to the end."""
        self.ensure_active(generation)
        if self._playback is None:
            return True
        completed = await self._playback.speak(text)
        self.ensure_active(generation)
        return completed

    def finish(self, generation: int) -> bool:
        """Clear is_processing if generation is still the current chain."""
        if generation != self._generation:
            return False
        self._is_processing = False
        return True

    # ------------------------------------------------------------------
    # Interrupt
    # ------------------------------------------------------------------

    async def interrupt(self, reason: str = "user interrupt") -> None:
        """Emergency stop. Leaves the lifecycle idle with no live work."""
        if self._is_interrupted:
            logger.debug("Interrupt already in progress")
            return

        logger.info("Interrupt: %s", reason)
        self._is_interrupted = True

        token = self._cancel_token
        self._cancel_token = None
        if token is not None:
            token.cancel(reason)

        for hook in list(self._hooks):
            try:
                hook()
            except Exception as e:
                logger.warning("Interrupt hook failed: %s", e)

        if self._playback is not None:
            try:
                await self._playback.stop()
            except Exception as e:
                logger.warning("Error stopping playback during interrupt: %s", e)

        if self._listening is not None:
            try:
                await self._listening.cancel()
            except Exception as e:
                logger.warning("Error cancelling listening during interrupt: %s", e)

        if self._config.settle_delay_ms > 0:
            await asyncio.sleep(self._config.settle_delay_ms / 1000.0)

        self._generation += 1
        self._is_processing = False
        for callback in list(self._reset_callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning("Reset callback failed: %s", e)

        self._is_interrupted = False
        logger.info("Interrupt complete")

    def reset(self) -> None:
        """Drop all request state without the interrupt sequence."""
        token = self._cancel_token
        self._cancel_token = None
        if token is not None:
            token.cancel("reset")
        self._generation += 1
        self._is_processing = False
        self._is_interrupted = False
