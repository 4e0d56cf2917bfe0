"""Domain events announced to connected clients."""

from votecast.events.models import EventTarget, QueuedEvent

__all__ = ["EventTarget", "QueuedEvent"]
