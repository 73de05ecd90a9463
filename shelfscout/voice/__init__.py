"""
Voice handling for the interaction core.

Provides:
- Energy-based voice activity detection with hysteresis
- End-of-utterance arbitration across racing detectors
- Speech session wiring and platform detection strategy
- TTS playback and haptic/announcement feedback
"""

from .vad import VADEngine, VADSession, VADState, pcm_level_db
from .eou import EndOfUtteranceArbitrator, EOUSource, Utterance
from .platform import DetectionCapabilities, EOUStrategy, resolve_capabilities
from .listening import ListeningSession
from .playback import PlaybackController
from .feedback import FeedbackService

__all__ = [
    "VADEngine",
    "VADSession",
    "VADState",
    "pcm_level_db",
    "EndOfUtteranceArbitrator",
    "EOUSource",
    "Utterance",
    "DetectionCapabilities",
    "EOUStrategy",
    "resolve_capabilities",
    "ListeningSession",
    "PlaybackController",
    "FeedbackService",
]
