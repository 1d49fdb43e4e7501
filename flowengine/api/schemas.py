"""
flowengine/api/schemas.py
─────────────────────────
Pydantic request/response models for the API.
"""

from __future__ import annotations
from datetime import datetime

from pydantic import BaseModel

from flowengine.whatsapp.status import ConnectionState, ConnectionStatus


# ── Response schemas ───────────────────────────────────────────────────────

class StatusResponse(BaseModel):
    """Connection status as polled by the pairing screen."""
    tenant_id:              int
    status:                 ConnectionState
    qr_code:                str | None = None
    connected_phone_number: str | None = None
    last_error:             str | None = None
    updated_at:             datetime | None = None

    @classmethod
    def from_status(cls, status: ConnectionStatus) -> "StatusResponse":
        return cls(**status.model_dump())


class ActionResponse(BaseModel):
    message: str
