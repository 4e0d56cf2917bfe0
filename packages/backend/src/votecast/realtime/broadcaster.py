"""Producer API — announce domain events without touching the network.

Learn: business logic calls these after its database write commits.
Delivery is best-effort on purpose. If the queue can't be reached the
event is dropped and the caller never finds out: the authoritative state
lives in the database and clients can always re-fetch it through normal
queries. A broken broadcast channel must never fail a ballot.

Usage:
    from votecast.realtime.broadcaster import get_broadcaster

    get_broadcaster().motion_opened(meeting_id, motion_id, {"title": "..."})
"""

from typing import Any, Optional

import structlog

from votecast.events import QueuedEvent
from votecast.events.types import (
    ATTENDANCE_UPDATED,
    MEETING_STATUS_CHANGED,
    MOTION_CLOSED,
    MOTION_OPENED,
    MOTION_UPDATED,
    QUORUM_UPDATED,
    SPEECH_QUEUE_UPDATED,
    VOTE_CAST,
    VOTE_UPDATED,
)
from votecast.realtime.queue import EventQueue, QueueUnavailableError, build_queue

logger = structlog.get_logger()


class EventBroadcaster:
    """Fire-and-forget publisher backed by an EventQueue."""

    def __init__(self, queue: EventQueue):
        self.queue = queue

    def _publish(self, event: QueuedEvent) -> None:
        try:
            self.queue.append(event)
        except (QueueUnavailableError, OSError) as e:
            logger.warning(
                "broadcast.dropped",
                event_type=event.type,
                target=event.target,
                error=str(e),
            )

    # ── Generic targets ─────────────────────────────────────

    def publish_to_meeting(
        self, meeting_id: str, event_type: str, data: Optional[dict[str, Any]] = None
    ) -> None:
        self._publish(QueuedEvent.for_meeting(meeting_id, event_type, data))

    def publish_to_tenant(
        self, tenant_id: str, event_type: str, data: Optional[dict[str, Any]] = None
    ) -> None:
        self._publish(QueuedEvent.for_tenant(tenant_id, event_type, data))

    def publish_to_all(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Reach every open connection, authenticated or not.

        Reserved for non-sensitive administrative notices.
        """
        self._publish(QueuedEvent.for_all(event_type, data))

    # ── Meeting domain events ───────────────────────────────

    def motion_opened(self, meeting_id: str, motion_id: str, motion: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, MOTION_OPENED, {
            "motion_id": motion_id,
            "motion": motion or {},
        })

    def motion_closed(self, meeting_id: str, motion_id: str, results: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, MOTION_CLOSED, {
            "motion_id": motion_id,
            "results": results or {},
        })

    def motion_updated(self, meeting_id: str, motion_id: str, changes: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, MOTION_UPDATED, {
            "motion_id": motion_id,
            "changes": changes or {},
        })

    def vote_cast(self, meeting_id: str, motion_id: str, tally: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, VOTE_CAST, {
            "motion_id": motion_id,
            "tally": tally or {},
        })

    def vote_updated(self, meeting_id: str, motion_id: str, tally: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, VOTE_UPDATED, {
            "motion_id": motion_id,
            "tally": tally or {},
        })

    def attendance_updated(self, meeting_id: str, stats: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, ATTENDANCE_UPDATED, {"stats": stats or {}})

    def quorum_updated(self, meeting_id: str, quorum: Optional[dict] = None) -> None:
        self.publish_to_meeting(meeting_id, QUORUM_UPDATED, {"quorum": quorum or {}})

    def meeting_status_changed(
        self,
        meeting_id: str,
        tenant_id: str,
        new_status: str,
        old_status: str = "",
    ) -> None:
        """Tell the meeting room and the tenant's dashboards.

        Tenant rooms only get the new status; the meeting room also gets
        the previous one for transition animations.
        """
        self.publish_to_meeting(meeting_id, MEETING_STATUS_CHANGED, {
            "meeting_id": meeting_id,
            "new_status": new_status,
            "old_status": old_status,
        })
        self.publish_to_tenant(tenant_id, MEETING_STATUS_CHANGED, {
            "meeting_id": meeting_id,
            "new_status": new_status,
        })

    def speech_queue_updated(self, meeting_id: str, queue: Optional[list] = None) -> None:
        self.publish_to_meeting(meeting_id, SPEECH_QUEUE_UPDATED, {"queue": queue or []})


# Process-wide default (built lazily so importing this module has no I/O)
_broadcaster: Optional[EventBroadcaster] = None


def get_broadcaster() -> EventBroadcaster:
    """Get the default broadcaster, built from settings on first use."""
    global _broadcaster
    if _broadcaster is None:
        from votecast.config import settings

        _broadcaster = EventBroadcaster(build_queue(settings))
    return _broadcaster
