"""Broadcast statistics — connection and room counts."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/stats")
async def broadcast_stats(request: Request):
    return request.app.state.broadcast_server.get_stats()
