"""Liveness marker — a pid file other processes can check.

Learn: producers don't need the server to be up (events just wait in the
queue), but admin pages and the CLI want to show whether real-time
updates are live. The server writes its pid on startup; anyone can probe
that pid with signal 0.
"""

import os
from typing import Optional

import structlog

logger = structlog.get_logger()


def write_pid_file(path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(str(os.getpid()))
    logger.info("ws.pid_file_written", path=path, pid=os.getpid())


def remove_pid_file(path: str) -> None:
    """Remove the pid file, but only if it still names this process."""
    if read_pid(path) != os.getpid():
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def read_pid(path: str) -> Optional[int]:
    try:
        with open(path, encoding="utf-8") as f:
            pid = int(f.read().strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None


def is_server_running(path: str) -> bool:
    """True if the pid file names a live process."""
    pid = read_pid(path)
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, but owned by another user
        return True
    return True
