"""
flowengine/whatsapp/connection.py
─────────────────────────────────
Supervises one chat-transport session per tenant.

Status machine (per tenant)
───────────────────────────
  disconnected ──connect──▶ connecting ──qr──▶ qr_code_needed ──scan──▶ connecting
                                 │                                          │
                                 └──────────────open───────────────▶ connected
  connected ──close──▶ logged out        → disconnected_logged_out (credentials wiped)
                      restart required  → connecting, reconnect after a fixed delay
                      anything else     → error (no retry)

The manager is the only writer of ConnectionStatus.  `connect` and
`disconnect` never raise: failures become a status + `last_error`.
`send_message` is the exception and raises NotConnectedError.
"""

from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from flowengine.engine.messages import remote_address, should_process
from flowengine.errors import CredentialsCorruptedError, NotConnectedError
from flowengine.store import InMemoryStore, KeyedLock, KeyValueStore
from flowengine.whatsapp.credentials import CredentialStore
from flowengine.whatsapp.qr import render_qr_data_url
from flowengine.whatsapp.status import ConnectionState, ConnectionStatus
from flowengine.whatsapp.transport import (
    EVENT_CONNECTION_UPDATE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES_UPSERT,
    ConnectionUpdate,
    DisconnectReason,
    LastDisconnect,
    MessagesUpsert,
    TransportFactory,
    TransportSession,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[int, str, dict[str, Any]], Awaitable[None]]

DEFAULT_RECONNECT_DELAY = 5.0


class ConnectionManager:
    def __init__(
        self,
        factory: TransportFactory,
        credentials: CredentialStore,
        on_message: MessageCallback | None = None,
        statuses: KeyValueStore[ConnectionStatus] | None = None,
        sessions: KeyValueStore[TransportSession] | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ):
        self.factory         = factory
        self.credentials     = credentials
        self.on_message      = on_message
        self.statuses        = statuses if statuses is not None else InMemoryStore()
        self.sessions        = sessions if sessions is not None else InMemoryStore(copy_values=False)
        self.reconnect_delay = reconnect_delay

        self._locks       = KeyedLock()
        self._reconnects:  dict[int, asyncio.Task] = {}
        self._subscribers: dict[int, list[asyncio.Queue]] = {}

    # ==================================================================
    # Public API
    # ==================================================================

    async def get_status(self, tenant_id: int) -> ConnectionStatus:
        status = await self.statuses.get(tenant_id)
        return status if status is not None else ConnectionStatus.initial(tenant_id)

    async def get_session(self, tenant_id: int) -> TransportSession | None:
        return await self.sessions.get(tenant_id)

    async def connect(self, tenant_id: int) -> None:
        self._cancel_reconnect(tenant_id)
        async with self._locks.hold(tenant_id):
            if await self.sessions.get(tenant_id) is not None:
                logger.warning("connect() called for tenant %s with a live session – ignoring", tenant_id)
                return

            logger.info("Connecting WhatsApp for tenant %s...", tenant_id)
            await self._update_status(tenant_id, status=ConnectionState.CONNECTING, qr_code=None, last_error=None)

            session: TransportSession | None = None
            try:
                creds = await self.credentials.load(tenant_id)
                session = await self.factory.create_session(tenant_id, creds)
                self._bind(tenant_id, session)
                await self.sessions.set(tenant_id, session)
                await session.start()
            except CredentialsCorruptedError as exc:
                logger.error("Stored credentials unusable for tenant %s: %s", tenant_id, exc)
                await self.credentials.clear(tenant_id)
                await self._update_status(tenant_id, status=ConnectionState.AUTH_FAILURE, last_error=str(exc))
            except Exception as exc:
                logger.error("WhatsApp initialisation failed for tenant %s: %s", tenant_id, exc, exc_info=True)
                await self._update_status(
                    tenant_id, status=ConnectionState.ERROR, last_error=f"Initialization failed: {exc}",
                )
                await self._drop_session(tenant_id, session)

    async def disconnect(self, tenant_id: int) -> None:
        self._cancel_reconnect(tenant_id)
        async with self._locks.hold(tenant_id):
            session = await self.sessions.get(tenant_id)
            if session is None:
                await self.credentials.clear(tenant_id)
                await self._update_status(tenant_id, status=ConnectionState.DISCONNECTED, qr_code=None)
                return

            # The close event this triggers wipes credentials and sets the status
            try:
                await session.logout()
            except Exception as exc:
                logger.error("Logout failed for tenant %s: %s", tenant_id, exc, exc_info=True)
                await self._update_status(tenant_id, status=ConnectionState.ERROR, last_error=f"Logout failed: {exc}")
                await self._drop_session(tenant_id, session)

    async def send_message(self, tenant_id: int, address: str, payload: dict[str, Any]) -> Any:
        session = await self.sessions.get(tenant_id)
        status = await self.get_status(tenant_id)
        if session is None or status.status != ConnectionState.CONNECTED:
            raise NotConnectedError(tenant_id)
        return await session.send_message(address, payload)

    # ── status streaming ──────────────────────────────────────────────

    def subscribe(self, tenant_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(tenant_id, []).append(queue)
        return queue

    def unsubscribe(self, tenant_id: int, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.get(tenant_id, []).remove(queue)
        except ValueError:
            pass

    # ==================================================================
    # Transport events
    # ==================================================================

    def _bind(self, tenant_id: int, session: TransportSession) -> None:
        async def on_connection_update(update: Any) -> None:
            await self._on_connection_update(tenant_id, session, update)

        async def on_messages_upsert(upsert: Any) -> None:
            await self._on_messages_upsert(tenant_id, session, upsert)

        async def on_creds_update(creds: dict[str, Any]) -> None:
            try:
                await self.credentials.save(tenant_id, creds)
            except Exception as exc:
                logger.error("Could not persist credentials for tenant %s: %s", tenant_id, exc, exc_info=True)

        session.on(EVENT_CONNECTION_UPDATE, on_connection_update)
        session.on(EVENT_MESSAGES_UPSERT, on_messages_upsert)
        session.on(EVENT_CREDS_UPDATE, on_creds_update)

    async def _is_current(self, tenant_id: int, session: TransportSession) -> bool:
        return await self.sessions.get(tenant_id) is session

    async def _on_connection_update(self, tenant_id: int, session: TransportSession, update: Any) -> None:
        if not await self._is_current(tenant_id, session):
            logger.debug("Ignoring event from a replaced session (tenant %s)", tenant_id)
            return
        if not isinstance(update, ConnectionUpdate):
            update = ConnectionUpdate.model_validate(update)

        if update.qr:
            try:
                qr_code = await asyncio.to_thread(render_qr_data_url, update.qr)
            except Exception as exc:
                logger.warning("QR rendering failed for tenant %s, exposing raw payload: %s", tenant_id, exc)
                qr_code = update.qr
            await self._update_status(tenant_id, status=ConnectionState.QR_CODE_NEEDED, qr_code=qr_code)

        if update.connection == "close":
            await self._on_close(tenant_id, session, update.last_disconnect or LastDisconnect())
        elif update.connection == "open":
            phone = _phone_from_user_id(session.user_id)
            logger.info("WhatsApp connected for tenant %s as %s", tenant_id, phone)
            await self._update_status(
                tenant_id,
                status=ConnectionState.CONNECTED,
                qr_code=None,
                connected_phone_number=phone,
                last_error=None,
            )
        elif update.connection == "connecting":
            await self._update_status(tenant_id, status=ConnectionState.CONNECTING)

    async def _on_close(self, tenant_id: int, session: TransportSession, reason: LastDisconnect) -> None:
        code = reason.status_code
        logger.warning("Connection closed for tenant %s (status_code=%s): %s", tenant_id, code, reason.message)

        if code == DisconnectReason.LOGGED_OUT:
            await self.credentials.clear(tenant_id)
            await self._update_status(tenant_id, status=ConnectionState.DISCONNECTED_LOGGED_OUT, qr_code=None)
            await self._drop_session(tenant_id, session)
        elif code == DisconnectReason.RESTART_REQUIRED:
            logger.info("Restart required for tenant %s, reconnecting in %ss", tenant_id, self.reconnect_delay)
            await self._update_status(tenant_id, status=ConnectionState.CONNECTING, qr_code=None)
            await self._drop_session(tenant_id, session)
            self._schedule_reconnect(tenant_id)
        else:
            await self._update_status(
                tenant_id, status=ConnectionState.ERROR, last_error=reason.message or "Connection lost",
            )
            await self._drop_session(tenant_id, session)

    async def _on_messages_upsert(self, tenant_id: int, session: TransportSession, upsert: Any) -> None:
        if not await self._is_current(tenant_id, session):
            return
        if not isinstance(upsert, MessagesUpsert):
            upsert = MessagesUpsert.model_validate(upsert)

        for message in upsert.messages:
            if not should_process(message):
                continue
            if self.on_message is None:
                logger.warning("Inbound message for tenant %s dropped: no message handler", tenant_id)
                continue
            try:
                await self.on_message(tenant_id, remote_address(message), message)
            except Exception as exc:
                logger.error("Message handler failed for tenant %s: %s", tenant_id, exc, exc_info=True)

    # ==================================================================
    # Internals
    # ==================================================================

    async def _update_status(self, tenant_id: int, **changes: Any) -> ConnectionStatus:
        current = await self.get_status(tenant_id)
        updated = current.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        await self.statuses.set(tenant_id, updated)
        logger.info(
            "Connection status updated – tenant=%s status=%s has_qr=%s",
            tenant_id, updated.status.value, bool(updated.qr_code),
        )
        for queue in self._subscribers.get(tenant_id, []):
            queue.put_nowait(updated.model_copy())
        return updated

    async def _drop_session(self, tenant_id: int, session: TransportSession | None) -> None:
        """Forget `session` if it is still the registered handle."""
        if session is None or await self._is_current(tenant_id, session):
            await self.sessions.delete(tenant_id)

    def _schedule_reconnect(self, tenant_id: int) -> None:
        self._cancel_reconnect(tenant_id)
        task = asyncio.create_task(self._reconnect_later(tenant_id))
        task.add_done_callback(lambda done: _log_reconnect_failure(tenant_id, done))
        self._reconnects[tenant_id] = task

    def _cancel_reconnect(self, tenant_id: int) -> None:
        task = self._reconnects.pop(tenant_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _reconnect_later(self, tenant_id: int) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnects.pop(tenant_id, None)
        await self.connect(tenant_id)

    def pending_reconnect(self, tenant_id: int) -> bool:
        task = self._reconnects.get(tenant_id)
        return task is not None and not task.done()


def _log_reconnect_failure(tenant_id: int, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Reconnect failed for tenant %s: %s", tenant_id, exc, exc_info=exc)


def _phone_from_user_id(user_id: str | None) -> str | None:
    """'5511999990000:12@s.whatsapp.net' -> '5511999990000'"""
    if not user_id:
        return None
    return user_id.split(":", 1)[0].split("@", 1)[0]
