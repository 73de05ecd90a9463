"""
End-of-utterance arbitration.

Up to three detectors can decide that the user has finished speaking:
the energy VAD, the recognizer's own end-of-speech callback, and a
manual stop. They race. The arbitrator is the one place that turns them
into a single submission: the first eligible arrival wins and every
later arrival is dropped.

The guard flags are written synchronously before the submit callback is
invoked, so an arrival scheduled in the same tick always sees them set.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .vad import VADEngine

logger = logging.getLogger("shelfscout.voice.eou")


class EOUSource(str, Enum):
    """Which detector reported the end of the utterance."""
    RMS_VAD = "rms_vad"
    NATIVE = "native"
    MANUAL = "manual"


@dataclass
class Utterance:
    """Per-utterance state. Reset once per start of listening."""
    transcript_so_far: str = ""
    has_auto_submitted: bool = False
    is_manual_stop: bool = False


SubmitCallback = Callable[[str], None]


class EndOfUtteranceArbitrator:
    """Single choke point for "the user is done, submit now"."""

    def __init__(self, vad: Optional[VADEngine] = None, enable_auto_submit: bool = True):
        self._vad = vad
        self.enable_auto_submit = enable_auto_submit
        self._utterance = Utterance()
        self._submit_callback: Optional[SubmitCallback] = None
        self._submit_count = 0

    @property
    def utterance(self) -> Utterance:
        return self._utterance

    @property
    def transcript(self) -> str:
        return self._utterance.transcript_so_far

    @property
    def submit_count(self) -> int:
        """Submissions made since construction."""
        return self._submit_count

    def set_submit_callback(self, callback: Optional[SubmitCallback]) -> None:
        self._submit_callback = callback

    def begin_utterance(self) -> None:
        """Clear every per-utterance flag. Called when listening starts."""
        self._utterance = Utterance()
        logger.debug("New utterance")

    def update_transcript(self, text: str) -> None:
        """Record the recognizer's latest hypothesis for this utterance."""
        if text:
            self._utterance.transcript_so_far = text

    def clear_transcript(self) -> None:
        self._utterance.transcript_so_far = ""

    def trigger_auto_submit(self, source: EOUSource) -> bool:
        """Submit the utterance if no other path has claimed it.

        Returns True if this call submitted.
        """
        utterance = self._utterance

        if not self.enable_auto_submit:
            logger.debug("Auto-submit disabled, ignoring %s", source.value)
            return False
        if utterance.has_auto_submitted:
            logger.debug("Already submitted, ignoring %s", source.value)
            return False
        if utterance.is_manual_stop:
            logger.debug("Manual stop in progress, ignoring %s", source.value)
            return False

        transcript = utterance.transcript_so_far.strip()
        if not transcript:
            logger.debug("Empty transcript, ignoring %s", source.value)
            return False
        if self._submit_callback is None:
            logger.debug("No submit callback registered, ignoring %s", source.value)
            return False

        utterance.has_auto_submitted = True
        if self._vad is not None:
            self._vad.cancel_silence_timer()

        logger.info("Auto-submit via %s: %r", source.value, transcript)
        self._submit_count += 1
        self._submit_callback(transcript)
        return True

    def manual_stop(self) -> Optional[str]:
        """Claim the utterance for the manual path.

        Returns the transcript to submit, or None if an automatic
        submission already happened.
        """
        utterance = self._utterance
        if utterance.has_auto_submitted:
            logger.info("Manual stop after auto-submit, nothing to do")
            return None

        utterance.is_manual_stop = True
        if self._vad is not None:
            self._vad.cancel_silence_timer()
        transcript = utterance.transcript_so_far.strip()
        if transcript:
            self._submit_count += 1
        logger.info("Manual stop: %r", transcript)
        return transcript
