"""
flowengine/whatsapp/transport.py
────────────────────────────────
Contracts between the ConnectionManager and a chat-transport session.

A session is created by a TransportFactory, gets its listeners registered,
and is then started.  From then on it reports lifecycle changes and
messages through three events:

    connection.update   ConnectionUpdate
    messages.upsert     MessagesUpsert
    creds.update        dict  (full credential blob to persist)
"""

from __future__ import annotations
from enum import IntEnum
from typing import Any, Awaitable, Callable, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

EVENT_CONNECTION_UPDATE = "connection.update"
EVENT_MESSAGES_UPSERT   = "messages.upsert"
EVENT_CREDS_UPDATE      = "creds.update"

EventHandler = Callable[[Any], Awaitable[None]]


class DisconnectReason(IntEnum):
    CONNECTION_CLOSED    = 428
    CONNECTION_LOST      = 408
    CONNECTION_REPLACED  = 440
    LOGGED_OUT           = 401
    BAD_SESSION          = 500
    RESTART_REQUIRED     = 515
    MULTIDEVICE_MISMATCH = 411


class LastDisconnect(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status_code: int | None = Field(None, alias="statusCode")
    message:     str | None = None


class ConnectionUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connection:      Literal["connecting", "open", "close"] | None = None
    last_disconnect: LastDisconnect | None = Field(None, alias="lastDisconnect")
    qr:              str | None = None


class MessagesUpsert(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)
    type:     str = "notify"


class TransportSession(Protocol):
    user_id: str | None

    def on(self, event: str, handler: EventHandler) -> None: ...
    async def start(self) -> None: ...
    async def send_message(self, address: str, payload: dict[str, Any]) -> Any: ...
    async def logout(self) -> None: ...


class TransportFactory(Protocol):
    async def create_session(self, tenant_id: int, credentials: dict[str, Any] | None) -> TransportSession: ...


class EventEmitter:
    """Small listener registry the concrete sessions build on."""

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, payload: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            await handler(payload)
