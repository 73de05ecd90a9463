"""
Detection capability strategy.

Resolved once at startup from the platform profile. The rest of the core
only reads the resulting DetectionCapabilities and never branches on the
platform name itself.

- ios: the recognizer's end-of-speech callback and the energy VAD race
  through the arbitrator, with the default thresholds.
- android: the energy VAD is authoritative (polled levels, its own
  threshold pair) and the recognizer callback is ignored.
- no usable level source: recognizer callback and manual stop only.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..config import VADConfig

logger = logging.getLogger("shelfscout.voice.platform")

# Android metering reads lower than iOS for the same speech
ANDROID_SPEECH_THRESHOLD_DB = -40.0
ANDROID_SILENCE_THRESHOLD_DB = -47.0

_THRESHOLD_FIELDS = {"speech_threshold_db", "silence_threshold_db"}


class EOUStrategy(str, Enum):
    """How end of utterance is detected."""
    NATIVE = "native"
    POLLING = "polling"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class DetectionCapabilities:
    """What the listening session may rely on."""
    strategy: EOUStrategy
    use_rms_vad: bool
    honor_native_eou: bool
    vad_config: VADConfig


def resolve_capabilities(
    platform: str,
    vad_config: VADConfig,
    has_level_source: bool,
    enable_rms_vad: bool = True,
) -> DetectionCapabilities:
    """Pick the detection strategy for this process."""
    platform = platform.strip().lower()
    rms_available = has_level_source and enable_rms_vad

    if not rms_available:
        caps = DetectionCapabilities(
            strategy=EOUStrategy.FALLBACK,
            use_rms_vad=False,
            honor_native_eou=True,
            vad_config=vad_config,
        )
    elif platform == "android":
        # Explicitly configured thresholds win over the platform pair
        if not (_THRESHOLD_FIELDS & vad_config.model_fields_set):
            vad_config = vad_config.model_copy(update={
                "speech_threshold_db": ANDROID_SPEECH_THRESHOLD_DB,
                "silence_threshold_db": ANDROID_SILENCE_THRESHOLD_DB,
            })
        caps = DetectionCapabilities(
            strategy=EOUStrategy.POLLING,
            use_rms_vad=True,
            honor_native_eou=False,
            vad_config=vad_config,
        )
    else:
        caps = DetectionCapabilities(
            strategy=EOUStrategy.NATIVE,
            use_rms_vad=True,
            honor_native_eou=True,
            vad_config=vad_config,
        )

    logger.info(
        "EOU strategy for %s: %s (rms_vad=%s, native_eou=%s, speech=%.1fdB, silence=%.1fdB)",
        platform,
        caps.strategy.value,
        caps.use_rms_vad,
        caps.honor_native_eou,
        caps.vad_config.speech_threshold_db,
        caps.vad_config.silence_threshold_db,
    )
    return caps
