"""Session ID utilities.

One session id accompanies every request of an interaction, including
every iteration of a continuous loop. It is only replaced once the
backend reports that neither loop mode is active any more.
"""

import logging
from typing import TYPE_CHECKING
from uuid import UUID, uuid4, uuid5

if TYPE_CHECKING:
    from ..schemas.workflow import BackendResponse

logger = logging.getLogger("shelfscout.utils.session_id")

# Device labels hash into this namespace.
_DEVICE_NAMESPACE = UUID("3b0f6c2e-9d41-4f7a-b8e5-2c6a1d9e7f10")


def normalize_session_id(raw: str | None) -> str:
    """First session id for a device.

    A UUID is kept (canonical form). Any other label, such as a device
    name, always hashes to the same UUID5. Without one, a random id.
    """
    label = (raw or "").strip()
    if not label:
        return str(uuid4())
    try:
        return str(UUID(label))
    except ValueError:
        return str(uuid5(_DEVICE_NAMESPACE, label))


class SessionIdentity:
    """Holds the session id shared by all requests of one interaction."""

    def __init__(self, initial: str | None = None):
        self._current = normalize_session_id(initial)
        self._generation = 0

    @property
    def current(self) -> str:
        return self._current

    @property
    def generation(self) -> int:
        """How many times the id has been regenerated."""
        return self._generation

    def observe(self, response: "BackendResponse") -> bool:
        """Regenerate the id if the response ends the interaction.

        Returns True when a new id was issued.
        """
        if response.wants_loop:
            return False
        previous = self._current
        self._current = str(uuid4())
        self._generation += 1
        logger.debug("Session ended, id %s -> %s", previous, self._current)
        return True
