"""Cross-friend memory (CFM) and the friendship records it is gated on."""

from .cfm import CFMService
from .friends import FriendshipService

__all__ = ["CFMService", "FriendshipService"]
