
"""Discord presence components."""

from .helpers import PresenceManager

__all__ = [
    "PresenceManager",
]
