"""API route aggregation.

All routers registered here get mounted in main.py. Both are open,
read-only operational endpoints; the WebSocket route is mounted
separately (see realtime/websocket.py).
"""

from fastapi import APIRouter

from votecast.api.health import router as health_router
from votecast.api.stats import router as stats_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(stats_router, tags=["stats"])
