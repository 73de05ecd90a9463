"""
Playback controller for spoken answers.

Runs TTS playback as a task with stop support.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..services.protocols import SpeechEngine

logger = logging.getLogger("shelfscout.voice.playback")


class PlaybackController:
    """Runs TTS playback as a task with stop support."""

    def __init__(self, engine: SpeechEngine):
        self.engine = engine
        self._task: Optional[asyncio.Task] = None

    @property
    def is_speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    async def speak(
        self,
        text: str,
        on_start: Optional[Callable[[], None]] = None,
        on_done: Optional[Callable[[], None]] = None,
    ) -> bool:
        """
        Speak text, returning when playback ends.

        Args:
            text: Text to speak
            on_start: Callback when speech starts
            on_done: Callback when speech ends, stopped or not

        Returns:
            True if playback completed, False if it was stopped.
        """
        if not text.strip():
            return True
        if self.is_speaking:
            await self.stop()

        task = asyncio.ensure_future(self.engine.speak(text))
        self._task = task
        try:
            if on_start:
                on_start()
            await task
            return True
        except asyncio.CancelledError:
            if task.done() and task.cancelled():
                logger.info("Playback stopped")
                return False
            raise
        finally:
            if self._task is task:
                self._task = None
            if on_done:
                on_done()

    async def stop(self) -> None:
        """Stop current playback."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        try:
            await self.engine.stop_speaking()
        except Exception as e:
            logger.warning("Error stopping TTS: %s", e)
