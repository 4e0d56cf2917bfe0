"""Health check endpoint.

Learn: reports whether this process is serving and whether the event
queue's backing store can be reached. A queue outage only degrades
real-time updates, so the endpoint still answers 200.
"""

import os

from fastapi import APIRouter, Request

from votecast import __version__
from votecast.realtime.liveness import is_server_running

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and queue connectivity."""
    server = request.app.state.broadcast_server
    settings = server.settings
    checks = {"server": "ok", "version": __version__}

    # Check the queue backend
    try:
        if settings.queue_backend == "redis":
            await server.queue.ping()
        else:
            lock_dir = os.path.dirname(os.path.abspath(settings.queue_lock_file))
            if not os.access(lock_dir, os.W_OK):
                raise OSError(f"{lock_dir} is not writable")
        checks["queue"] = "ok"
    except Exception as e:
        checks["queue"] = f"error: {e}"

    checks["pid_file"] = "ok" if is_server_running(settings.pid_file) else "missing"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, "pid": os.getpid(), **checks}
