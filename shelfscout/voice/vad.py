"""
Energy-based voice activity detection.

Turns a periodic microphone level (dB) into speech transitions:

    IDLE -> LISTENING -> SPEAKING -> SILENCE -> LISTENING (end of utterance)
                             ^           |
                             +-----------+ (speech resumes before timeout)

The silence threshold sits below the speech threshold so a level hovering
near the boundary does not flap between states. Silence runs shorter than
min_pause_threshold_ms are treated as hesitations and ignored. A silence
run reaching silence_threshold_ms emits end-of-utterance exactly once.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from ..config import VADConfig
from ..services.protocols import LevelSource

logger = logging.getLogger("shelfscout.voice.vad")

# Level reported for digital silence (log of zero)
SILENCE_FLOOR_DB = -100.0


class VADState(str, Enum):
    """VAD engine states."""
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"
    SILENCE = "silence"


@dataclass
class VADSession:
    """Mutable detection state. Timestamps are monotonic milliseconds."""
    state: VADState = VADState.IDLE
    last_speech_timestamp: float = 0.0
    silence_start_timestamp: float = 0.0


def pcm_level_db(frame_bytes: bytes) -> float:
    """RMS level of a 16-bit mono PCM frame in dBFS."""
    arr = np.frombuffer(frame_bytes, dtype=np.int16).astype(np.float32) / 32768.0
    if arr.size == 0:
        return SILENCE_FLOOR_DB
    rms = float(np.sqrt(np.mean(arr * arr)))
    if rms <= 0.0:
        return SILENCE_FLOOR_DB
    return max(SILENCE_FLOOR_DB, 20.0 * float(np.log10(rms)))


class VADEngine:
    """Hysteresis VAD over a stream of level samples.

    Levels arrive either from a LevelSource started by start(), or by
    calling process_sample() / process_frame() directly. If the level
    source cannot be started the engine runs degraded: it reports
    LISTENING but never emits, and callers fall back on other
    end-of-utterance sources.
    """

    def __init__(
        self,
        config: Optional[VADConfig] = None,
        level_source: Optional[LevelSource] = None,
        clock: Callable[[], float] = time.monotonic,
        **overrides: Any,
    ):
        self._config = config or VADConfig()
        if overrides:
            self._config = self._merged(overrides)
        self._level_source = level_source
        self._clock = clock
        self._session = VADSession()
        self._monitoring = False
        self._degraded = False
        self._timer: Optional[asyncio.TimerHandle] = None

        self._on_speech_start: Optional[Callable[[], Any]] = None
        self._on_speech_end: Optional[Callable[[], Any]] = None
        self._on_end_of_utterance: Optional[Callable[[], Any]] = None

        logger.info(
            "VAD initialized: silence=%dms, min_pause=%dms, speech=%.1fdB, "
            "silence=%.1fdB, interval=%dms",
            self._config.silence_threshold_ms,
            self._config.min_pause_threshold_ms,
            self._config.speech_threshold_db,
            self._config.silence_threshold_db,
            self._config.sampling_interval_ms,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> VADConfig:
        return self._config

    @property
    def state(self) -> VADState:
        return self._session.state

    @property
    def session(self) -> VADSession:
        return self._session

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def is_degraded(self) -> bool:
        return self._degraded

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def is_speaking(self) -> bool:
        return self._session.state == VADState.SPEAKING

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        on_speech_start: Optional[Callable[[], Any]] = None,
        on_speech_end: Optional[Callable[[], Any]] = None,
        on_end_of_utterance: Optional[Callable[[], Any]] = None,
    ) -> None:
        """Begin monitoring."""
        if self._monitoring:
            logger.warning("VAD already monitoring")
            return

        self._on_speech_start = on_speech_start
        self._on_speech_end = on_speech_end
        self._on_end_of_utterance = on_end_of_utterance
        self._degraded = False

        if self._level_source is not None:
            try:
                self._level_source.start(
                    self.process_sample, self._config.sampling_interval_ms
                )
            except Exception as e:
                logger.warning(
                    "Level monitoring unavailable, VAD running degraded: %s", e
                )
                self._degraded = True

        self._monitoring = True
        self._session = VADSession(
            state=VADState.LISTENING,
            last_speech_timestamp=self._now_ms(),
        )
        logger.info("VAD monitoring started%s", " (degraded)" if self._degraded else "")

    def stop(self) -> None:
        """Stop monitoring and return to IDLE."""
        if not self._monitoring:
            return

        self._monitoring = False
        self._cancel_timer()
        self._session = VADSession()

        if self._level_source is not None and not self._degraded:
            try:
                self._level_source.stop()
            except Exception as e:
                logger.warning("Error stopping level monitoring: %s", e)
        self._degraded = False
        logger.info("VAD monitoring stopped")

    def update_config(self, **overrides: Any) -> None:
        """Update thresholds at runtime. Invalid combinations raise ValueError."""
        self._config = self._merged(overrides)
        logger.info("VAD config updated: %s", overrides)

    def cancel_silence_timer(self) -> None:
        """Drop a pending end-of-utterance timer (utterance already submitted)."""
        if self._timer is None:
            return
        self._cancel_timer()
        if self._session.state == VADState.SILENCE:
            self._session.state = VADState.LISTENING
        logger.debug("Pending silence timer cancelled")

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def process_frame(self, frame_bytes: bytes) -> None:
        """Feed a raw 16-bit PCM frame."""
        self.process_sample(pcm_level_db(frame_bytes))

    def process_sample(self, level_db: float) -> None:
        """Feed one level sample in dB."""
        if not self._monitoring or self._degraded:
            return

        cfg = self._config
        now = self._now_ms()
        state = self._session.state

        if state == VADState.LISTENING:
            if level_db > cfg.speech_threshold_db:
                self._handle_speech_detected(now)

        elif state == VADState.SPEAKING:
            if level_db > cfg.speech_threshold_db:
                self._session.last_speech_timestamp = now
            elif level_db < cfg.silence_threshold_db:
                self._handle_silence_detected(now)

        elif state == VADState.SILENCE:
            if level_db > cfg.speech_threshold_db:
                logger.info("Speech resumed before end of utterance")
                self._cancel_timer()
                self._session.state = VADState.SPEAKING
                self._session.last_speech_timestamp = now

    def _handle_speech_detected(self, now: float) -> None:
        logger.info("Speech detected")
        self._session.state = VADState.SPEAKING
        self._session.last_speech_timestamp = now
        self._emit(self._on_speech_start, "speech start")

    def _handle_silence_detected(self, now: float) -> None:
        silence_ms = now - self._session.last_speech_timestamp
        if silence_ms < self._config.min_pause_threshold_ms:
            logger.debug("Brief pause (%.0fms), ignoring", silence_ms)
            return

        self._session.state = VADState.SILENCE
        self._session.silence_start_timestamp = self._session.last_speech_timestamp
        logger.info("Silence detected after %.0fms, arming end-of-utterance timer", silence_ms)
        self._emit(self._on_speech_end, "speech end")
        self._arm_timer(now)

    def _arm_timer(self, now: float) -> None:
        self._cancel_timer()
        elapsed = now - self._session.silence_start_timestamp
        remaining_ms = max(0.0, self._config.silence_threshold_ms - elapsed)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(remaining_ms / 1000.0, self._on_silence_timeout)
        logger.debug("End-of-utterance timer: %.0fms remaining", remaining_ms)

    def _on_silence_timeout(self) -> None:
        self._timer = None
        if not self._monitoring or self._session.state != VADState.SILENCE:
            return
        logger.info("End of utterance detected")
        self._session.state = VADState.LISTENING
        self._emit(self._on_end_of_utterance, "end of utterance")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _merged(self, overrides: dict) -> VADConfig:
        unknown = set(overrides) - set(VADConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown VAD settings: {sorted(unknown)}")
        values = self._config.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return VADConfig(**values)

    @staticmethod
    def _emit(callback: Optional[Callable[[], Any]], name: str) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception as e:
            logger.error("Error in VAD %s callback: %s", name, e, exc_info=True)
