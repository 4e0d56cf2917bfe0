"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan owns the broadcast server: it builds the event queue,
writes the liveness pid file, starts the drain timer, and tears all of
that down again on shutdown.

One process, one BroadcastServer. Run a single worker: rooms live in
this process's memory, so a second worker would see different rooms and
race the first for the queue.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from votecast import __version__
from votecast.config import Settings, settings as default_settings

logger = structlog.get_logger()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle.

        Learn: Anything before `yield` runs at startup, after `yield`
        runs at shutdown.
        """
        from votecast.realtime.liveness import remove_pid_file, write_pid_file
        from votecast.realtime.queue import build_queue
        from votecast.realtime.server import BroadcastServer

        logger.info(
            "votecast.starting",
            version=__version__,
            environment=settings.environment,
            queue_backend=settings.queue_backend,
            port=settings.port,
        )

        server = BroadcastServer(build_queue(settings), settings)
        app.state.broadcast_server = server

        try:
            write_pid_file(settings.pid_file)
        except OSError as e:
            # Only the liveness check suffers; broadcasting still works
            logger.warning("votecast.pid_file_failed", path=settings.pid_file, error=str(e))

        await server.start()

        yield

        logger.info("votecast.shutdown")
        await server.stop()
        await server.queue.aclose()
        remove_pid_file(settings.pid_file)

    app = FastAPI(
        title="votecast",
        description="Real-time meeting event broadcast over WebSocket",
        version=__version__,
        lifespan=lifespan,
    )

    # Mount operational API routes
    from votecast.api import api_router
    app.include_router(api_router)

    # Mount WebSocket route
    from votecast.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: votecast.main:app)
app = create_app()
