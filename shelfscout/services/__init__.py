"""
Collaborator interfaces and their concrete adapters.
"""

from .protocols import (
    Announcer,
    BackendClient,
    CapturedPhoto,
    Haptics,
    LevelSource,
    NativeGuidance,
    PhotoCapture,
    SpeechEngine,
    SpeechSession,
)

__all__ = [
    "Announcer",
    "BackendClient",
    "CapturedPhoto",
    "Haptics",
    "LevelSource",
    "NativeGuidance",
    "PhotoCapture",
    "SpeechEngine",
    "SpeechSession",
]
