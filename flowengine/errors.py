"""
flowengine/errors.py
────────────────────
Exception taxonomy.

Only `NotConnectedError` (and whatever the transport raises while sending)
ever leaves a public call; everything else is caught at the executor or
connection-manager boundary and turned into a log line or a status value.
"""

from __future__ import annotations


class FlowEngineError(Exception):
    """Base class for every error raised by this package."""


# ── transport / connection ────────────────────────────────────────────────

class NotConnectedError(FlowEngineError):
    def __init__(self, tenant_id: int):
        super().__init__(f"WhatsApp not connected for tenant {tenant_id}")
        self.tenant_id = tenant_id


class TransportError(FlowEngineError):
    """A transport session could not be created, started or used."""


class CredentialsCorruptedError(FlowEngineError):
    """The persisted credential blob for a tenant cannot be decoded."""


# ── flow graph interpretation ─────────────────────────────────────────────

class FlowGraphError(FlowEngineError):
    def __init__(self, flow_id: int | None, message: str):
        super().__init__(message)
        self.flow_id = flow_id


class MissingStartNodeError(FlowGraphError):
    def __init__(self, flow_id: int | None):
        super().__init__(flow_id, f"Flow {flow_id} has no start node")


class AmbiguousStartNodeError(FlowGraphError):
    def __init__(self, flow_id: int | None, candidates: list[str]):
        super().__init__(flow_id, f"Flow {flow_id} has several start nodes: {candidates}")
        self.candidates = candidates
