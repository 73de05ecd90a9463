"""
Non-visual feedback: haptic earcons and screen reader announcements.

Both collaborators are fire-and-forget. Failures are logged and never
reach the interaction flow.
"""

import logging
from typing import Optional

from ..services.protocols import Announcer, Haptics

logger = logging.getLogger("shelfscout.voice.feedback")

# Vibration patterns (ms)
EARCON_PATTERNS: dict[str, list[int]] = {
    "ready": [50],
    "listening": [50, 100, 50],
    "thinking": [100],
    "speaking": [150],
    "error": [100, 100, 100, 100, 100],
    "cancel": [75, 75],
}

STATE_MESSAGES: dict[str, str] = {
    "ready": "Ready. Tap to speak.",
    "listening": "Listening. Tap to stop recording.",
    "thinking": "Processing. Please wait.",
    "speaking": "Speaking. Tap to interrupt.",
}

PROCESSING_MESSAGE = "Processing your request"


def guidance_message(label: str) -> str:
    return f"Guiding you to {label}. Follow the audio cues."


class FeedbackService:
    """Earcons plus announcements for interaction state changes."""

    def __init__(self, haptics: Optional[Haptics] = None, announcer: Optional[Announcer] = None):
        self._haptics = haptics
        self._announcer = announcer
        self._last_announced_state: Optional[str] = None

    def play_earcon(self, state: str) -> None:
        pattern = EARCON_PATTERNS.get(state)
        if pattern is None:
            logger.warning("Unknown earcon state: %s", state)
            return
        if self._haptics is None:
            return
        try:
            self._haptics.vibrate(pattern)
            logger.debug("Earcon: %s", state)
        except Exception as e:
            logger.warning("Vibration not available: %s", e)

    def announce(self, message: str) -> None:
        if not message or self._announcer is None:
            return
        try:
            self._announcer.announce(message)
        except Exception as e:
            logger.warning("Announcement failed: %s", e)

    def announce_error(self, message: str) -> None:
        self.announce(f"Error: {message}")

    def announce_state(self, state: str) -> None:
        """Announce a state change, skipping a repeat of the last one."""
        if state == self._last_announced_state:
            logger.debug("State %s already announced, skipping", state)
            return
        self._last_announced_state = state
        self.announce(STATE_MESSAGES.get(state, state))

    def reset(self) -> None:
        self._last_announced_state = None
