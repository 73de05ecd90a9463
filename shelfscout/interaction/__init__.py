"""
Request lifecycle and cancellation.

The tap-driven InteractionController lives in .controller; it depends on
the continuous loop, which in turn depends on this package.
"""

from .cancel import CancelToken
from .lifecycle import InteractionLifecycle, InteractionState

__all__ = [
    "CancelToken",
    "InteractionLifecycle",
    "InteractionState",
]
