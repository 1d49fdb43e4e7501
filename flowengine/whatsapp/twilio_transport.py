"""
flowengine/whatsapp/twilio_transport.py
───────────────────────────────────────
WhatsApp over the Twilio Business API.

Twilio has no QR pairing: a session "opens" as soon as credentials are
present.  Credentials come from the tenant's stored blob
({"account_sid", "auth_token", "whatsapp_from"}) and fall back to the
TWILIO_* settings.  Inbound messages arrive on the HTTP webhook, which hands
the form fields to `TwilioSession.receive_webhook`.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any

from flowengine.config import TwilioSettings, settings
from flowengine.errors import TransportError
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

WHATSAPP_PREFIX = "whatsapp:"
JID_SUFFIX      = "@s.whatsapp.net"


def jid_to_twilio(address: str) -> str:
    """'5511999990000@s.whatsapp.net' -> 'whatsapp:+5511999990000'"""
    if address.startswith(WHATSAPP_PREFIX):
        return address
    number = address.split("@", 1)[0]
    if not number.startswith("+"):
        number = f"+{number}"
    return f"{WHATSAPP_PREFIX}{number}"


def twilio_to_jid(address: str) -> str:
    """'whatsapp:+5511999990000' -> '5511999990000@s.whatsapp.net'"""
    number = address.removeprefix(WHATSAPP_PREFIX).lstrip("+")
    return f"{number}{JID_SUFFIX}"


class TwilioSession(EventEmitter):
    def __init__(self, tenant_id: int, credentials: dict[str, Any]):
        super().__init__()
        self.tenant_id     = tenant_id
        self.account_sid   = credentials.get("account_sid")
        self.auth_token    = credentials.get("auth_token")
        self.whatsapp_from = credentials.get("whatsapp_from")
        self.user_id: str | None = None
        self._client = None

    def _credentials(self) -> dict[str, Any]:
        return {
            "account_sid":   self.account_sid,
            "auth_token":    self.auth_token,
            "whatsapp_from": self.whatsapp_from,
        }

    async def start(self) -> None:
        if not all([self.account_sid, self.auth_token, self.whatsapp_from]):
            raise TransportError("Twilio credentials missing (account_sid, auth_token, whatsapp_from)")

        from twilio.rest import Client

        self._client = Client(self.account_sid, self.auth_token)
        self.user_id = twilio_to_jid(self.whatsapp_from)
        await self.emit(EVENT_CREDS_UPDATE, self._credentials())
        await self.emit(EVENT_CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def send_message(self, address: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            raise TransportError("Twilio session not started")
        body = payload.get("text", "")
        message = await asyncio.to_thread(
            self._client.messages.create,
            body=body,
            from_=self.whatsapp_from,
            to=jid_to_twilio(address),
        )
        logger.info("WhatsApp sent to %s – SID: %s", address, message.sid)
        return {"status": "sent", "sid": message.sid, "to": address}

    async def logout(self) -> None:
        self._client = None
        await self.emit(
            EVENT_CONNECTION_UPDATE,
            ConnectionUpdate(
                connection="close",
                last_disconnect=LastDisconnect(status_code=DisconnectReason.LOGGED_OUT, message="Logged out"),
            ),
        )

    async def receive_webhook(self, form: dict[str, Any]) -> None:
        """Translate a Twilio inbound-message webhook into a messages.upsert event."""
        sender = form.get("From") or ""
        message = {
            "key": {
                "remoteJid": twilio_to_jid(sender),
                "fromMe":    False,
                "id":        form.get("MessageSid"),
            },
            "message": {"conversation": form.get("Body") or ""},
            "pushName": form.get("ProfileName"),
        }
        await self.emit(EVENT_MESSAGES_UPSERT, MessagesUpsert(messages=[message]))


class TwilioTransportFactory:
    def __init__(self, defaults: TwilioSettings | None = None):
        self.defaults = defaults or settings.twilio

    async def create_session(self, tenant_id: int, credentials: dict[str, Any] | None) -> TwilioSession:
        merged = {
            "account_sid":   self.defaults.account_sid,
            "auth_token":    self.defaults.auth_token,
            "whatsapp_from": self.defaults.whatsapp_from,
        }
        merged.update({k: v for k, v in (credentials or {}).items() if v})
        return TwilioSession(tenant_id, merged)


def validate_signature(auth_token: str | None, url: str, form: dict[str, Any], signature: str | None) -> bool:
    """True when the X-Twilio-Signature header matches, or when no token is configured."""
    if not auth_token:
        return True
    from twilio.request_validator import RequestValidator

    return RequestValidator(auth_token).validate(url, form, signature or "")
