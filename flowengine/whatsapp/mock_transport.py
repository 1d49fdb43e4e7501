"""
flowengine/whatsapp/mock_transport.py
─────────────────────────────────────
In-process transport for local development and the console CLI.

Nothing leaves the machine: sends are logged and printed, and inbound
messages are injected with `MockSession.inject(address, text)`.  A tenant
with no stored credentials goes through a fake QR pairing first, so the
status sequence matches a real device
(connecting → qr_code_needed → connected).
"""

from __future__ import annotations
import itertools
import logging
from typing import Any

from flowengine.whatsapp.transport import (
    EVENT_CONNECTION_UPDATE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    EventEmitter,
    LastDisconnect,
    MessagesUpsert,
)

logger = logging.getLogger(__name__)

MOCK_USER_ID = "5500000000000:1@s.whatsapp.net"

_message_ids = itertools.count(1)


class MockSession(EventEmitter):
    def __init__(self, tenant_id: int, credentials: dict[str, Any] | None, echo: bool = True):
        super().__init__()
        self.tenant_id   = tenant_id
        self.credentials = credentials
        self.echo        = echo
        self.user_id: str | None = None
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def start(self) -> None:
        if not self.credentials:
            await self.emit(EVENT_CONNECTION_UPDATE, ConnectionUpdate(qr=f"mock-pairing:{self.tenant_id}"))
            # Pretend the QR code was scanned straight away
            self.credentials = {"paired": True, "tenant_id": self.tenant_id}
            await self.emit(EVENT_CREDS_UPDATE, self.credentials)
        self.user_id = MOCK_USER_ID
        await self.emit(EVENT_CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def send_message(self, address: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.sent.append((address, payload))
        text = payload.get("text", "")
        logger.info("[MOCK SEND] tenant=%s to=%s text=%r", self.tenant_id, address, text)
        if self.echo:
            print(f"  bot → {address}: {text}")
        return {"status": "mock_sent", "to": address, "id": f"MOCK{next(_message_ids)}"}

    async def logout(self) -> None:
        await self.emit(
            EVENT_CONNECTION_UPDATE,
            ConnectionUpdate(
                connection="close",
                last_disconnect=LastDisconnect(status_code=DisconnectReason.LOGGED_OUT, message="Logged out"),
            ),
        )

    async def inject(self, address: str, text: str) -> None:
        message = {
            "key":     {"remoteJid": address, "fromMe": False, "id": f"IN{next(_message_ids)}"},
            "message": {"conversation": text},
        }
        await self.emit(EVENT_MESSAGES_UPSERT, MessagesUpsert(messages=[message]))


class MockTransportFactory:
    def __init__(self, echo: bool = True):
        self.echo = echo

    async def create_session(self, tenant_id: int, credentials: dict[str, Any] | None) -> MockSession:
        return MockSession(tenant_id, credentials, echo=self.echo)
