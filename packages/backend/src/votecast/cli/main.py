"""votecast CLI — run the broadcast server and check whether it's up.

Usage:
    votecast serve                        # Start on VOTECAST_HOST:VOTECAST_PORT
    votecast serve --port 9000            # Override the port
    votecast status                       # Is the server running? (pid file)

In production, run `votecast serve` under a process manager
(systemd, supervisord) with a single worker.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click

from votecast.config import settings


@click.group()
def cli():
    """votecast — real-time meeting event broadcast."""


@cli.command()
@click.option("--host", default=None, help="Interface to bind (default: VOTECAST_HOST).")
@click.option("--port", default=None, type=int, help="Port to listen on (default: VOTECAST_PORT).")
def serve(host: Optional[str], port: Optional[int]):
    """Start the WebSocket broadcast server."""
    import uvicorn

    from votecast.main import create_app

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    host = host or settings.host
    port = port or settings.port
    click.echo(f"votecast listening on ws://{host}:{port}/ws (pid file: {settings.pid_file})")

    uvicorn.run(create_app(settings), host=host, port=port, log_level="info")


@cli.command()
def status():
    """Report whether the broadcast server is running."""
    from votecast.realtime.liveness import is_server_running, read_pid

    if is_server_running(settings.pid_file):
        click.echo(f"running (pid {read_pid(settings.pid_file)})")
        return
    click.echo("not running")
    sys.exit(1)


if __name__ == "__main__":
    cli()
