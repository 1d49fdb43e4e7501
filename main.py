#!/usr/bin/env python3
"""
main.py
───────
CLI entry-point for the WhatsApp Flow Engine.

Usage:
    python main.py serve                         # run the HTTP API (uvicorn)
    python main.py chat --flow flow.json         # talk to a flow in the terminal
    python main.py chat --flow flow.json --contact 5511988887777@s.whatsapp.net

`chat` runs the real executor and connection manager against the in-process
mock transport: every line you type is delivered as an inbound WhatsApp
message, and whatever the flow sends back is printed.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path
from typing import Any

from flowengine.config import settings

# ---------------------------------------------------------------------------
# Logging setup (before any app imports that might log at import time)
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("flowengine")

# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------
BANNER = """
╔══════════════════════════════════════════════════════════════╗
║          💬  WHATSAPP FLOW ENGINE                            ║
║     Connection lifecycle + conversational flow executor     ║
╚══════════════════════════════════════════════════════════════╝
"""


# ===========================================================================
# Pre-flight checks
# ===========================================================================

def check_postgres() -> bool:
    """Try a quick sync connect to Postgres."""
    try:
        import psycopg2
        conn = psycopg2.connect(
            host=settings.postgres.host,
            port=settings.postgres.port,
            dbname=settings.postgres.db,
            user=settings.postgres.user,
            password=settings.postgres.password,
            connect_timeout=3,
        )
        conn.close()
        logger.info("✓ Postgres OK.")
        return True
    except Exception as exc:
        logger.warning("✗ Postgres not reachable: %s  (active flows cannot be loaded)", exc)
        return False


def check_twilio() -> bool:
    if settings.whatsapp.transport != "twilio":
        logger.info("✓ Transport '%s' needs no credentials.", settings.whatsapp.transport)
        return True
    if not all([settings.twilio.account_sid, settings.twilio.auth_token, settings.twilio.whatsapp_from]):
        logger.warning("✗ Twilio transport selected but TWILIO_* credentials are incomplete.")
        return False
    logger.info("✓ Twilio credentials present.")
    return True


# ===========================================================================
# Pretty-print helpers
# ===========================================================================

def print_stage(name: str) -> None:
    print(f"\n{'═' * 58}")
    print(f"  ▶  {name}")
    print(f"{'═' * 58}")


def print_state(state: Any) -> None:
    if state is None:
        print("  (no state)")
        return
    print(f"  current node = {state.current_node_id}")
    print(f"  waiting      = {state.waiting_for_input}  (variable: {state.variable_to_save})")
    print(f"  variables    = {state.variables}")


# ===========================================================================
# chat
# ===========================================================================

def load_flow(path: str, tenant_id: int):
    """Accepts either a bare {nodes, edges} graph or a full flow object."""
    from flowengine.graph.flow import Flow, FlowStatus

    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if "elements" in raw:
        raw = {**raw, "tenant_id": tenant_id, "status": FlowStatus.ACTIVE}
        raw.setdefault("id", 1)
        return Flow.model_validate(raw)
    return Flow(id=1, tenant_id=tenant_id, name=Path(path).stem, status=FlowStatus.ACTIVE, elements=raw)


async def run_chat(flow_path: str, tenant_id: int, contact: str) -> None:
    from flowengine.db.flow_repository import InMemoryFlowRepository
    from flowengine.runtime import build_runtime
    from flowengine.whatsapp.credentials import FileCredentialStore
    from flowengine.whatsapp.mock_transport import MockTransportFactory

    flow = load_flow(flow_path, tenant_id)
    sessions_dir = tempfile.mkdtemp(prefix="flowengine-chat-")

    runtime = build_runtime(
        flows=InMemoryFlowRepository([flow]),
        factory=MockTransportFactory(),
        credentials=FileCredentialStore(sessions_dir),
    )

    print_stage("CONNECTING")
    await runtime.connections.connect(tenant_id)
    status = await runtime.connections.get_status(tenant_id)
    print(f"  status = {status.status.value}  phone = {status.connected_phone_number}")
    session = await runtime.connections.get_session(tenant_id)
    if session is None:
        print(f"  ✗ could not connect: {status.last_error}")
        return

    print_stage(f"CHAT  –  flow '{flow.name}'  (empty line or Ctrl-D to quit, '/state' to inspect)")
    while True:
        try:
            line = await asyncio.to_thread(input, "  you > ")
        except EOFError:
            break
        if not line:
            break
        if line.strip() == "/state":
            print_state(await runtime.executor.states.get((tenant_id, contact)))
            continue
        await session.inject(contact, line)

    print_stage("DISCONNECTING")
    await runtime.connections.disconnect(tenant_id)
    status = await runtime.connections.get_status(tenant_id)
    print(f"  status = {status.status.value}")


# ===========================================================================
# Main
# ===========================================================================

def main():
    print(BANNER)

    parser = argparse.ArgumentParser(description="WhatsApp Flow Engine CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host",        type=str, default="0.0.0.0")
    serve.add_argument("--port",        type=int, default=8080)
    serve.add_argument("--skip-checks", action="store_true", help="Skip pre-flight checks")

    chat = sub.add_parser("chat", help="Talk to a flow through the mock transport")
    chat.add_argument("--flow",    type=str, required=True, help="Flow JSON file")
    chat.add_argument("--tenant",  type=int, default=1)
    chat.add_argument("--contact", type=str, default="5511988887777@s.whatsapp.net")

    args = parser.parse_args()

    if args.command == "chat":
        if not Path(args.flow).exists():
            print(f"  Flow file not found: {args.flow}")
            sys.exit(1)
        asyncio.run(run_chat(args.flow, args.tenant, args.contact))
        return

    # ── serve ───────────────────────────────────────────────────────
    if not args.skip_checks:
        print_stage("PRE-FLIGHT CHECKS")
        check_postgres()
        check_twilio()

    import uvicorn
    uvicorn.run("flowengine.api.main:app", host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
