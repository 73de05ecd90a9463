"""
Assistant launcher.

Builds the one process-wide InteractionController from settings and the
platform collaborators. The detection strategy is resolved here, once.
"""

import logging
from typing import Optional

from .config import Settings, settings
from .continuous.loop import ContinuousModeLoop
from .interaction.controller import InteractionController
from .interaction.lifecycle import InteractionLifecycle
from .services.native_guidance import NativeGuidanceBridge
from .services.protocols import (
    Announcer,
    BackendClient,
    Haptics,
    LevelSource,
    NativeGuidance,
    PhotoCapture,
    SpeechEngine,
    SpeechSession,
)
from .services.workflow_client import WorkflowClient
from .utils.session_id import SessionIdentity
from .voice.eou import EndOfUtteranceArbitrator
from .voice.feedback import FeedbackService
from .voice.listening import ListeningSession
from .voice.platform import resolve_capabilities
from .voice.playback import PlaybackController
from .voice.vad import VADEngine

logger = logging.getLogger("shelfscout.launcher")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_assistant: Optional[InteractionController] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Install the root log handler."""
    name = (level or settings.log_level).upper()
    if settings.debug:
        name = "DEBUG"
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)


def create_assistant(
    speech: SpeechSession,
    tts: SpeechEngine,
    camera: PhotoCapture,
    level_source: Optional[LevelSource] = None,
    backend: Optional[BackendClient] = None,
    haptics: Optional[Haptics] = None,
    announcer: Optional[Announcer] = None,
    native_guidance: Optional[NativeGuidance] = None,
    config: Optional[Settings] = None,
    session_id: Optional[str] = None,
) -> InteractionController:
    """Create the assistant from config and make it the active instance.

    session_id (or the configured device_id) seeds the first session id;
    a UUID is used as-is, any other label maps to a stable UUID.
    """
    global _assistant

    cfg = config or settings
    if _assistant is not None:
        logger.warning("Replacing existing assistant instance")

    logger.info("=== Assistant Configuration ===")
    logger.info("  platform=%s, device_id=%s", cfg.platform, cfg.device_id)
    logger.info("  auto_submit=%s, rms_vad=%s, language=%s",
                cfg.listening.enable_auto_submit, cfg.listening.enable_rms_vad, cfg.listening.language)
    logger.info("  settle_delay=%dms", cfg.interrupt.settle_delay_ms)
    logger.info("  continuous=%s (delay=%dms, max=%d, min_interval=%dms)",
                cfg.continuous.enabled, cfg.continuous.default_loop_delay_ms,
                cfg.continuous.max_iterations, cfg.continuous.min_request_interval_ms)
    logger.info("  workflow_url=%s, timeout=%.0fs", cfg.backend.workflow_url, cfg.backend.timeout_s)
    logger.info("===============================")

    capabilities = resolve_capabilities(
        cfg.platform,
        cfg.vad,
        has_level_source=level_source is not None,
        enable_rms_vad=cfg.listening.enable_rms_vad,
    )
    vad = None
    if capabilities.use_rms_vad:
        vad = VADEngine(config=capabilities.vad_config, level_source=level_source)

    feedback = FeedbackService(haptics=haptics, announcer=announcer)
    arbitrator = EndOfUtteranceArbitrator(vad=vad, enable_auto_submit=cfg.listening.enable_auto_submit)
    listening = ListeningSession(
        speech,
        arbitrator,
        capabilities,
        vad=vad,
        config=cfg.listening,
    )
    playback = PlaybackController(tts)
    lifecycle = InteractionLifecycle(cfg.interrupt, playback=playback, listening=listening)
    session = SessionIdentity(session_id or cfg.device_id)
    backend = backend or WorkflowClient(cfg.backend)

    loop = ContinuousModeLoop(
        lifecycle,
        backend,
        camera,
        session,
        config=cfg.continuous,
        feedback=feedback,
        guidance=NativeGuidanceBridge(native_guidance, feedback),
    )
    _assistant = InteractionController(
        lifecycle,
        listening,
        backend,
        camera,
        loop,
        session,
        feedback=feedback,
    )
    logger.info("Assistant created (%s strategy)", capabilities.strategy.value)
    return _assistant


def get_assistant() -> Optional[InteractionController]:
    """Get the active assistant instance."""
    return _assistant


async def shutdown_assistant() -> None:
    """Stop the active assistant and release its resources."""
    global _assistant

    if _assistant is None:
        return
    try:
        await _assistant.close()
    except Exception as e:
        logger.warning("Error stopping assistant: %s", e)
    _assistant = None
    logger.info("Assistant stopped")
