"""
flowengine/runtime.py
─────────────────────
Wires the connection manager and the flow executor together.

The two depend on each other: inbound messages go manager → executor, and
the executor sends through the manager.  `Runtime` builds both and closes
the loop; `get_runtime()` holds the process-wide instance the API uses.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass

from flowengine.config import Settings, settings as default_settings
from flowengine.db.flow_repository import FlowRepository, SqlFlowRepository
from flowengine.engine.executor import FlowExecutor
from flowengine.whatsapp.connection import ConnectionManager
from flowengine.whatsapp.credentials import CredentialStore, FileCredentialStore
from flowengine.whatsapp.transport import TransportFactory

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    connections: ConnectionManager
    executor:    FlowExecutor


def build_runtime(
    flows: FlowRepository,
    factory: TransportFactory,
    credentials: CredentialStore,
    reconnect_delay: float = 5.0,
) -> Runtime:
    connections = ConnectionManager(factory, credentials, reconnect_delay=reconnect_delay)
    executor = FlowExecutor(flows, connections)
    connections.on_message = executor.process_incoming_message
    return Runtime(connections=connections, executor=executor)


def transport_factory_from_settings(config: Settings) -> TransportFactory:
    if config.whatsapp.transport == "twilio":
        from flowengine.whatsapp.twilio_transport import TwilioTransportFactory
        return TwilioTransportFactory(config.twilio)
    from flowengine.whatsapp.mock_transport import MockTransportFactory
    return MockTransportFactory()


def build_default_runtime(config: Settings = default_settings) -> Runtime:
    """Postgres-backed flows, file-backed credentials, transport chosen by settings."""
    logger.info(
        "Building runtime – transport=%s sessions_dir=%s",
        config.whatsapp.transport, config.whatsapp.sessions_dir,
    )
    return build_runtime(
        flows=SqlFlowRepository(),
        factory=transport_factory_from_settings(config),
        credentials=FileCredentialStore(config.whatsapp.sessions_dir),
        reconnect_delay=config.whatsapp.reconnect_delay_seconds,
    )


_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_default_runtime()
    return _runtime
