"""
flowengine/whatsapp/status.py
─────────────────────────────
Per-tenant connection status, polled by the API and checked before sends.
"""

from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    DISCONNECTED            = "disconnected"
    CONNECTING              = "connecting"
    QR_CODE_NEEDED          = "qr_code_needed"
    CONNECTED               = "connected"
    AUTH_FAILURE            = "auth_failure"
    ERROR                   = "error"
    DISCONNECTED_LOGGED_OUT = "disconnected_logged_out"


class ConnectionStatus(BaseModel):
    tenant_id:              int
    status:                 ConnectionState = ConnectionState.DISCONNECTED
    qr_code:                str | None = None    # data URL, or the raw pairing payload
    connected_phone_number: str | None = None
    last_error:             str | None = None
    updated_at:             datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def initial(cls, tenant_id: int) -> "ConnectionStatus":
        return cls(tenant_id=tenant_id)
