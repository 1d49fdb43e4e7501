"""
flowengine/engine/executor.py
─────────────────────────────
Interprets a tenant's active flow for one contact at a time.

Each inbound message is one call to `process_incoming_message`.  The
conversation either runs straight through a chain of nodes, pauses on a
waitForInput node (we simply stop looping; the next message resumes it),
or ends.  Nothing raised while interpreting ever reaches the caller: the
message-ingestion path must survive broken flows and failed sends.
"""

from __future__ import annotations
import logging
from typing import Any, Protocol

from flowengine.db.flow_repository import FlowRepository
from flowengine.engine.messages import extract_text
from flowengine.errors import FlowGraphError
from flowengine.graph.flow import DEFAULT_HANDLE, RECEIVED_HANDLE, Flow
from flowengine.graph.nodes import Node, SendMessageNode, UnknownNode, WaitForInputNode
from flowengine.graph.state import ContactFlowState, StateKey, state_key
from flowengine.store import InMemoryStore, KeyedLock, KeyValueStore

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send_message(self, tenant_id: int, address: str, payload: dict[str, Any]) -> Any: ...


class FlowExecutor:
    def __init__(
        self,
        flows: FlowRepository,
        sender: MessageSender,
        states: KeyValueStore[ContactFlowState] | None = None,
    ):
        self.flows  = flows
        self.sender = sender
        self.states: KeyValueStore[ContactFlowState] = states if states is not None else InMemoryStore()
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_incoming_message(
        self,
        tenant_id: int,
        contact_address: str,
        message: dict[str, Any],
    ) -> None:
        key = state_key(tenant_id, contact_address)
        try:
            # Two replies racing on the same "waiting" state must not both resume it
            async with self._locks.hold(key):
                await self._process(key, message)
        except Exception as exc:
            logger.error(
                "Flow execution failed – tenant=%s contact=%s: %s",
                tenant_id, contact_address, exc, exc_info=True,
            )

    async def _process(self, key: StateKey, message: dict[str, Any]) -> None:
        tenant_id, contact = key
        text = extract_text(message)

        flow = await self.flows.get_active_flow(tenant_id)
        if flow is None or flow.elements is None:
            logger.warning("No active flow with elements – tenant=%s contact=%s", tenant_id, contact)
            return

        state = await self.states.get(key)
        if state is not None and state.flow_id != flow.id:
            logger.info(
                "Active flow changed (%s -> %s), restarting contact %s",
                state.flow_id, flow.id, contact,
            )
            state = None

        if state is not None and state.waiting_for_input:
            await self._resume(key, flow, state, text)
        else:
            await self._start(key, flow)

    async def _resume(self, key: StateKey, flow: Flow, state: ContactFlowState, text: str) -> None:
        tenant_id, contact = key
        variable = state.bind_input(text)
        state.touch()
        await self.states.set(key, state)
        logger.info(
            "Input received – tenant=%s contact=%s variable=%s value=%r",
            tenant_id, contact, variable, text,
        )

        next_id = flow.elements.next_node_id(state.current_node_id, RECEIVED_HANDLE)
        if next_id is None:
            logger.info("End of flow %s after user input – contact=%s", flow.id, contact)
            return

        next_node = flow.elements.get_node(next_id)
        if next_node is None:
            logger.warning("Node %s not found in flow %s", next_id, flow.id)
            return
        await self.run(key, flow, state, next_node)

    async def _start(self, key: StateKey, flow: Flow) -> None:
        tenant_id, contact = key
        try:
            start = flow.find_start_node()
        except FlowGraphError as exc:
            logger.error("Cannot start flow – tenant=%s contact=%s: %s", tenant_id, contact, exc)
            return

        state = ContactFlowState(flow_id=flow.id, current_node_id=start.id)
        await self.run(key, flow, state, start)

    # ------------------------------------------------------------------
    # Interpretation
    # ------------------------------------------------------------------

    async def run(self, key: StateKey, flow: Flow, state: ContactFlowState, node: Node | None) -> None:
        """Step through nodes until one pauses or the chain ends."""
        while node is not None:
            node = await self.step(key, flow, state, node)

    async def step(self, key: StateKey, flow: Flow, state: ContactFlowState, node: Node) -> Node | None:
        """
        Execute one node and return the node to continue with.

        `None` means stop: either the contact must answer first
        (state.waiting_for_input is True) or the conversation is over.
        """
        tenant_id, contact = key
        logger.info("Executing node – tenant=%s contact=%s kind=%s id=%s", tenant_id, contact, node.kind, node.id)

        state.enter(node.id)
        await self.states.set(key, state)

        if isinstance(node, SendMessageNode):
            if isinstance(node.data.text, str):
                await self.sender.send_message(tenant_id, contact, {"text": node.data.text})
            return self._follow(flow, node.id, DEFAULT_HANDLE)

        if isinstance(node, WaitForInputNode):
            if node.data.message:
                await self.sender.send_message(tenant_id, contact, {"text": node.data.message})
            state.await_input(node.data.variable_name)
            await self.states.set(key, state)
            return None

        if isinstance(node, UnknownNode):
            logger.warning("Node kind %r not supported (node %s, flow %s)", node.kind, node.id, flow.id)
            return None

        raise TypeError(f"Unhandled node variant {type(node).__name__}")

    def _follow(self, flow: Flow, node_id: str, handle: str) -> Node | None:
        next_id = flow.elements.next_node_id(node_id, handle)
        if next_id is None:
            return None
        next_node = flow.elements.get_node(next_id)
        if next_node is None:
            logger.warning("Next node %s not found in flow %s", next_id, flow.id)
        return next_node
