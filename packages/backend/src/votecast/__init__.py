"""votecast — real-time meeting event broadcast.

Pushes meeting state changes (motions, ballots, attendance, quorum) to
voting terminals, the operator console and the projector over WebSocket,
without polling.
"""

__version__ = "0.1.0"
