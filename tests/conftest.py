from __future__ import annotations
from typing import Any

import pytest

from flowengine.graph.flow import Flow, FlowStatus
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

TENANT = 1
CONTACT = "5511988887777@s.whatsapp.net"


# ---------------------------------------------------------------------------
# Flow builders
# ---------------------------------------------------------------------------

def send(node_id: str, text: str) -> dict[str, Any]:
    return {"id": node_id, "type": "sendMessage", "data": {"text": text}}


def wait(node_id: str, prompt: str | None, variable: str | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {"message": prompt}
    if variable is not None:
        data["variableName"] = variable
    return {"id": node_id, "type": "waitForInput", "data": data}


def edge(source: str, target: str, handle: str = "source-bottom") -> dict[str, Any]:
    return {"id": f"{source}-{handle}-{target}", "source": source, "sourceHandle": handle, "target": target}


def make_flow(nodes, edges, flow_id: int = 10, tenant_id: int = TENANT, status=FlowStatus.ACTIVE) -> Flow:
    return Flow(
        id=flow_id,
        tenant_id=tenant_id,
        name=f"flow {flow_id}",
        status=status,
        elements={"nodes": nodes, "edges": edges},
    )


@pytest.fixture
def scenario_flow() -> Flow:
    """A: "Hi" → B: wait "Name?" (name) ─received→ C: "Hello {name}" """
    return make_flow(
        [send("A", "Hi"), wait("B", "Name?", "name"), send("C", "Hello {name}")],
        [edge("A", "B"), edge("B", "C", "source-received")],
    )


def inbound(text: str, address: str = CONTACT, from_me: bool = False) -> dict[str, Any]:
    return {
        "key": {"remoteJid": address, "fromMe": from_me, "id": "MSG"},
        "message": {"conversation": text},
    }


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class RecordingSender:
    """Stands in for the ConnectionManager in executor tests."""

    def __init__(self, fail_with: Exception | None = None):
        self.sent: list[tuple[int, str, dict[str, Any]]] = []
        self.fail_with = fail_with

    async def send_message(self, tenant_id: int, address: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((tenant_id, address, payload))
        return {"status": "sent"}

    @property
    def texts(self) -> list[str]:
        return [payload["text"] for _, _, payload in self.sent]


class FakeSession(EventEmitter):
    """Session whose events are driven by the test."""

    def __init__(self, tenant_id: int, credentials: dict[str, Any] | None, start_error: Exception | None = None):
        super().__init__()
        self.tenant_id   = tenant_id
        self.credentials = credentials
        self.start_error = start_error
        self.user_id: str | None = "5511900001111:7@s.whatsapp.net"
        self.started     = False
        self.logged_out  = False
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def send_message(self, address: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.sent.append((address, payload))
        return {"key": {"id": f"OUT{len(self.sent)}"}}

    async def logout(self) -> None:
        self.logged_out = True
        await self.close(DisconnectReason.LOGGED_OUT, "Logged out")

    # ── helpers for tests ─────────────────────────────────────────────

    async def open(self) -> None:
        await self.emit(EVENT_CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def close(self, code: int | None, message: str | None = None) -> None:
        await self.emit(
            EVENT_CONNECTION_UPDATE,
            ConnectionUpdate(connection="close", last_disconnect=LastDisconnect(status_code=code, message=message)),
        )

    async def qr(self, payload: str) -> None:
        await self.emit(EVENT_CONNECTION_UPDATE, {"qr": payload})

    async def deliver(self, *messages: dict[str, Any]) -> None:
        await self.emit(EVENT_MESSAGES_UPSERT, MessagesUpsert(messages=list(messages)))

    async def update_creds(self, creds: dict[str, Any]) -> None:
        await self.emit(EVENT_CREDS_UPDATE, creds)


class FakeFactory:
    def __init__(self, create_error: Exception | None = None, start_error: Exception | None = None):
        self.sessions: list[FakeSession] = []
        self.create_error = create_error
        self.start_error = start_error

    async def create_session(self, tenant_id: int, credentials: dict[str, Any] | None) -> FakeSession:
        if self.create_error is not None:
            raise self.create_error
        session = FakeSession(tenant_id, credentials, start_error=self.start_error)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


class MemoryCredentials:
    def __init__(self, initial: dict[int, dict[str, Any]] | None = None):
        self.blobs: dict[int, dict[str, Any]] = dict(initial or {})
        self.cleared: list[int] = []

    async def load(self, tenant_id: int) -> dict[str, Any] | None:
        return self.blobs.get(tenant_id)

    async def save(self, tenant_id: int, credentials: dict[str, Any]) -> None:
        self.blobs[tenant_id] = credentials

    async def clear(self, tenant_id: int) -> None:
        self.cleared.append(tenant_id)
        self.blobs.pop(tenant_id, None)


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def credentials() -> MemoryCredentials:
    return MemoryCredentials()
