"""
Bridge to the platform-native guidance subsystem.

The subsystem takes over a reaching task entirely once started. Starting
it is best-effort: any failure reads as "not available" so the caller
can fall back to the reaching loop.
"""

import logging
from typing import Optional

from ..schemas.workflow import Region
from ..voice.feedback import FeedbackService, guidance_message
from .protocols import NativeGuidance

logger = logging.getLogger("shelfscout.services.native_guidance")


class NativeGuidanceBridge:
    """Starts and stops native guidance without ever raising."""

    def __init__(
        self,
        guidance: Optional[NativeGuidance] = None,
        feedback: Optional[FeedbackService] = None,
    ):
        self._guidance = guidance
        self._feedback = feedback or FeedbackService()
        self._active_label: Optional[str] = None

    @property
    def active_label(self) -> Optional[str]:
        """Label of the object being guided to, if guidance is running."""
        return self._active_label

    async def is_available(self) -> bool:
        if self._guidance is None:
            return False
        try:
            return bool(await self._guidance.is_available())
        except Exception as e:
            logger.warning("Native guidance availability check failed: %s", e)
            return False

    async def start(self, region: Region, label: str) -> bool:
        """Hand the task over. Returns False if guidance could not start."""
        if not region.is_valid:
            logger.warning("Refusing native guidance with invalid region %s", region.as_list())
            return False
        if not await self.is_available():
            logger.info("Native guidance not available")
            return False

        self._feedback.announce(guidance_message(label))
        try:
            await self._guidance.start_guidance(region, label)
        except Exception as e:
            logger.error("Native guidance failed to start: %s", e)
            return False

        self._active_label = label
        logger.info("Native guidance started for %s at %s", label, region.as_list())
        return True

    async def stop(self) -> None:
        if self._guidance is None or self._active_label is None:
            return
        self._active_label = None
        try:
            await self._guidance.stop_guidance()
        except Exception as e:
            logger.warning("Error stopping native guidance: %s", e)
