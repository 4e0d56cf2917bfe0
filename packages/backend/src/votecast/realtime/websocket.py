"""WebSocket endpoint — one long-lived task per client.

Learn: clients connect to /ws and then talk the control protocol
(authenticate → subscribe → receive broadcasts). The handler is a thin
loop: every frame goes to BroadcastServer.handle_message, and
whatever way the loop ends (client hangs up, server error) the session
is cleaned out of every room.

Authentication happens after accept, not in the handshake: a bad token
gets an auth_error and the client may retry on the same socket.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from votecast.realtime.server import CLOSE_INTERNAL_ERROR, BroadcastServer

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def broadcast_websocket(websocket: WebSocket):
    """Real-time meeting events for voting terminals, consoles and projectors."""
    server: BroadcastServer = websocket.app.state.broadcast_server

    await websocket.accept()
    session = None
    try:
        session = await server.open_connection(websocket)
        structlog.contextvars.bind_contextvars(connection_id=session.connection_id)

        while not session.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames have no "text" and get the malformed-input reply
            await server.handle_message(session, message.get("text"))
    except WebSocketDisconnect:
        if session is not None:
            await server.close_connection(session)
    except Exception:
        if session is not None and session.closed:
            # The server already hung up on this client (failed broadcast)
            return
        # Never let one connection take the server down
        logger.exception("ws.connection_error")
        if session is not None:
            await server.close_connection(session, code=CLOSE_INTERNAL_ERROR)
        else:
            try:
                await websocket.close(code=CLOSE_INTERNAL_ERROR)
            except Exception as e:
                logger.debug("ws.close_failed", error=str(e))
    finally:
        structlog.contextvars.unbind_contextvars("connection_id")
