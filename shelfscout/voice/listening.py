"""
Listening session: wires the recognizer and the energy VAD into the
end-of-utterance arbitrator.

The platform recognizer calls on_speech_start / on_speech_partial /
on_speech_final / on_speech_end / on_speech_error. Whether its
end-of-speech callback may submit, and whether the VAD runs at all, is
decided by the DetectionCapabilities resolved at startup.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..config import ListeningConfig
from ..exceptions import TranscriptionError
from ..services.protocols import SpeechSession
from .eou import EndOfUtteranceArbitrator, EOUSource
from .platform import DetectionCapabilities
from .vad import VADEngine

logger = logging.getLogger("shelfscout.voice.listening")


class ListeningSession:
    """One recognizer plus optional VAD, feeding one arbitrator."""

    def __init__(
        self,
        speech: SpeechSession,
        arbitrator: EndOfUtteranceArbitrator,
        capabilities: DetectionCapabilities,
        vad: Optional[VADEngine] = None,
        config: Optional[ListeningConfig] = None,
        on_error: Optional[Callable[[TranscriptionError], None]] = None,
    ):
        self._speech = speech
        self._arbitrator = arbitrator
        self._capabilities = capabilities
        self._vad = vad
        self._config = config or ListeningConfig()
        self._on_error = on_error
        self._listening = False
        # Bumped by every start, stop and cancel.
        self._epoch = 0
        self._latest_start = 0

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def arbitrator(self) -> EndOfUtteranceArbitrator:
        return self._arbitrator

    @property
    def uses_vad(self) -> bool:
        return self._vad is not None and self._capabilities.use_rms_vad

    def set_error_handler(self, handler: Optional[Callable[[TranscriptionError], None]]) -> None:
        self._on_error = handler

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Start a fresh utterance.

        Returns False when the utterance was stopped or superseded while
        the recognizer was still coming up. The recognizer is left off then.

        Raises:
            TranscriptionError: the recognizer refused to start
        """
        self._epoch += 1
        attempt = self._latest_start = self._epoch
        self._arbitrator.begin_utterance()
        await self._teardown_stale()

        if self._config.restart_delay_ms > 0:
            await asyncio.sleep(self._config.restart_delay_ms / 1000.0)
        if self._superseded(attempt):
            logger.info("Listening start abandoned before the recognizer started")
            return False

        try:
            await self._speech.start(self._config.language)
        except Exception as e:
            if self._superseded(attempt):
                logger.debug("Recognizer start failed after being abandoned: %s", e)
                return False
            self._listening = False
            logger.error("Failed to start speech recognition: %s", e)
            raise TranscriptionError(_error_code(e)) from e

        if self._superseded(attempt):
            logger.info("Listening stopped while the recognizer was starting")
            # A newer start may already own the recognizer.
            if self._latest_start == attempt:
                try:
                    await self._speech.cancel()
                except Exception as e:
                    logger.warning("Error stopping speech recognition: %s", e)
            return False

        self._listening = True
        if self.uses_vad:
            self._vad.start(on_end_of_utterance=self._on_vad_end_of_utterance)
        logger.info(
            "Listening (%s, vad=%s)",
            self._capabilities.strategy.value,
            self.uses_vad,
        )
        return True

    async def stop(self) -> Optional[str]:
        """Manual stop. Returns the transcript to submit, or None if an
        automatic submission already claimed this utterance."""
        self._epoch += 1
        transcript = self._arbitrator.manual_stop()
        await self._shutdown(cancel=False)
        return transcript

    async def finish(self) -> None:
        """Stop the recognizer after an automatic submission."""
        await self._shutdown(cancel=False)

    async def cancel(self) -> None:
        """Abort without submitting. Errors are logged, never raised."""
        self._epoch += 1
        await self._shutdown(cancel=True)
        self._arbitrator.clear_transcript()

    def _superseded(self, attempt: int) -> bool:
        return attempt != self._epoch

    async def _teardown_stale(self) -> None:
        self._stop_vad()
        for name in ("stop", "cancel"):
            try:
                await getattr(self._speech, name)()
            except Exception as e:
                logger.debug("Stale recognizer %s failed: %s", name, e)

    async def _shutdown(self, cancel: bool) -> None:
        self._listening = False
        self._stop_vad()
        try:
            if cancel:
                await self._speech.cancel()
            else:
                await self._speech.stop()
        except Exception as e:
            logger.warning("Error stopping speech recognition: %s", e)

    def _stop_vad(self) -> None:
        if self._vad is not None:
            self._vad.stop()

    # ------------------------------------------------------------------
    # Recognizer events
    # ------------------------------------------------------------------

    def on_speech_start(self) -> None:
        logger.debug("Recognizer heard speech")

    def on_speech_partial(self, text: str) -> None:
        if self._listening:
            self._arbitrator.update_transcript(text)

    def on_speech_final(self, text: str) -> None:
        if self._listening:
            self._arbitrator.update_transcript(text)

    def on_speech_end(self) -> None:
        if not self._listening:
            return
        if not self._capabilities.honor_native_eou:
            logger.debug("Recognizer end-of-speech ignored (%s)", self._capabilities.strategy.value)
            return
        self._arbitrator.trigger_auto_submit(EOUSource.NATIVE)

    def on_speech_error(self, code: object) -> None:
        logger.error("Speech recognition error: %s", code)
        self._listening = False
        self._stop_vad()
        error = TranscriptionError(code)
        if self._on_error is not None:
            self._on_error(error)

    def _on_vad_end_of_utterance(self) -> None:
        if self._listening:
            self._arbitrator.trigger_auto_submit(EOUSource.RMS_VAD)


def _error_code(exc: BaseException) -> object:
    """Recognizer errors carry a code attribute or just a message."""
    code = getattr(exc, "code", None)
    return code if code else str(exc)
