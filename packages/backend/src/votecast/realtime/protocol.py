"""Wire protocol — client control messages and server replies.

Learn: clients speak JSON with one `action` field per message:

    {"action": "authenticate", "token": "...", "tenant_id": "..."}
    {"action": "subscribe", "meeting_id": "..."}
    {"action": "unsubscribe", "meeting_id": "..."}
    {"action": "ping"}

Parsing problems raise ProtocolError carrying the reply to send back.
They never close the connection.
"""

import json
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ProtocolError(Exception):
    """A control message that can't be handled, with the reply to send."""

    def __init__(self, message: str, reply_type: str = "error"):
        super().__init__(message)
        self.message = message
        self.reply_type = reply_type

    def to_reply(self) -> dict[str, Any]:
        return {"type": self.reply_type, "message": self.message}


# ─── Client → server ────────────────────────────────────────


class _ControlMessage(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)


class AuthenticateMessage(_ControlMessage):
    action: Literal["authenticate"]
    token: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)


class SubscribeMessage(_ControlMessage):
    action: Literal["subscribe"]
    meeting_id: str = Field(min_length=1)


class UnsubscribeMessage(_ControlMessage):
    action: Literal["unsubscribe"]
    meeting_id: str = Field(min_length=1)


class PingMessage(_ControlMessage):
    action: Literal["ping"]


ControlMessage = Union[AuthenticateMessage, SubscribeMessage, UnsubscribeMessage, PingMessage]

# action → (model, reply when fields are missing or invalid)
_MESSAGE_TYPES: dict[str, tuple[type[_ControlMessage], str, str]] = {
    "authenticate": (AuthenticateMessage, "Missing token or tenant_id", "auth_error"),
    "subscribe": (SubscribeMessage, "Missing meeting_id", "error"),
    "unsubscribe": (UnsubscribeMessage, "Missing meeting_id", "error"),
    "ping": (PingMessage, "Invalid message format", "error"),
}


def parse_control_message(raw: Optional[str]) -> ControlMessage:
    """Parse one text frame into a typed control message."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        raise ProtocolError("Invalid message format") from None

    if not isinstance(data, dict) or not isinstance(data.get("action"), str):
        raise ProtocolError("Invalid message format")

    entry = _MESSAGE_TYPES.get(data["action"])
    if entry is None:
        raise ProtocolError("Unknown action")

    model, message, reply_type = entry
    try:
        return model.model_validate(data)
    except ValidationError:
        raise ProtocolError(message, reply_type) from None


# ─── Server → client ────────────────────────────────────────


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def connected(connection_id: str) -> dict[str, Any]:
    return {"type": "connected", "connection_id": connection_id, "timestamp": utc_timestamp()}


def authenticated(tenant_id: str) -> dict[str, Any]:
    return {"type": "authenticated", "tenant_id": tenant_id}


def subscribed(meeting_id: str) -> dict[str, Any]:
    return {"type": "subscribed", "meeting_id": meeting_id}


def unsubscribed(meeting_id: str) -> dict[str, Any]:
    return {"type": "unsubscribed", "meeting_id": meeting_id}


def pong() -> dict[str, Any]:
    return {"type": "pong", "timestamp": utc_timestamp()}


def error(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}


def auth_error(message: str = "Authentication failed") -> dict[str, Any]:
    return {"type": "auth_error", "message": message}
