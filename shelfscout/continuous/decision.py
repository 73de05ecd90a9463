"""
Next-action decision for a backend response.

Flags are evaluated in strict priority order, first match wins:

1. native handoff flag with a valid region -> NativeHandoff
2. reaching flag                           -> Loop(REACHING)
3. navigation flag                         -> Loop(NAVIGATION)
4. otherwise                               -> RunOnce if there is text
                                              to speak, else Stop
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from ..schemas.workflow import BackendResponse, Region

DEFAULT_HANDOFF_LABEL = "the item"


class LoopMode(str, Enum):
    """Autonomous loop flavours."""
    NAVIGATION = "navigation"
    REACHING = "reaching"


@dataclass(frozen=True)
class Stop:
    """Interaction is over; nothing to speak."""
    text: str = ""


@dataclass(frozen=True)
class RunOnce:
    """Speak the answer, then return to ready."""
    text: str


@dataclass(frozen=True)
class Loop:
    """Continue as an autonomous loop."""
    mode: LoopMode
    delay_ms: Optional[int] = None
    text: str = ""


@dataclass(frozen=True)
class NativeHandoff:
    """Hand the task to the platform guidance subsystem."""
    region: Region
    label: str
    text: str = ""


ActionDecision = Union[Stop, RunOnce, Loop, NativeHandoff]


def determine_action(response: BackendResponse) -> ActionDecision:
    """Map a response onto exactly one next action. Pure."""
    text = response.text.strip()

    if (
        response.native_handoff_flag
        and response.region is not None
        and response.region.is_valid
    ):
        return NativeHandoff(
            region=response.region,
            label=response.label or DEFAULT_HANDOFF_LABEL,
            text=text,
        )

    if response.reaching_flag:
        return Loop(mode=LoopMode.REACHING, delay_ms=response.loop_delay_ms, text=text)

    if response.navigation_flag:
        return Loop(mode=LoopMode.NAVIGATION, delay_ms=response.loop_delay_ms, text=text)

    if text:
        return RunOnce(text=text)
    return Stop()
