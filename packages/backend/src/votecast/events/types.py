"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every event a client may receive.
"""

# ─── Motions ─────────────────────────────────────────────

MOTION_OPENED = "motion.opened"
MOTION_CLOSED = "motion.closed"
MOTION_UPDATED = "motion.updated"

# ─── Ballots ─────────────────────────────────────────────

VOTE_CAST = "vote.cast"
VOTE_UPDATED = "vote.updated"

# ─── Attendance / quorum ─────────────────────────────────

ATTENDANCE_UPDATED = "attendance.updated"
QUORUM_UPDATED = "quorum.updated"

# ─── Meeting lifecycle ───────────────────────────────────

MEETING_STATUS_CHANGED = "meeting.status_changed"
SPEECH_QUEUE_UPDATED = "speech.queue_updated"
