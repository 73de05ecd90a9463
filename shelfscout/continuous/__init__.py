"""
Continuous mode - next-action decisions and the autonomous loop.
"""

from .decision import (
    ActionDecision,
    Loop,
    LoopMode,
    NativeHandoff,
    RunOnce,
    Stop,
    determine_action,
)
from .loop import ContinuousModeLoop, ContinuousModeState, LoopOutcome, StopReason

__all__ = [
    # Decision
    "ActionDecision",
    "Loop",
    "LoopMode",
    "NativeHandoff",
    "RunOnce",
    "Stop",
    "determine_action",
    # Loop
    "ContinuousModeLoop",
    "ContinuousModeState",
    "LoopOutcome",
    "StopReason",
]
