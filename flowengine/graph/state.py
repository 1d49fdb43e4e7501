"""
flowengine/graph/state.py
─────────────────────────
Per-contact execution state: where one contact currently is inside the
tenant's active flow, and what they have answered so far.

Keyed by (tenant_id, contact_address).  Only the FlowExecutor writes it.

Field-by-field lifecycle
─────────────────────────
  flow_id            set on creation; a mismatch with the active flow
                     discards the whole state on the next message
  current_node_id    updated before every node runs; left on the last
                     node once the conversation ends
  waiting_for_input  set by a waitForInput node, cleared as soon as the
                     reply is bound or any node starts running
  variable_to_save   name the next reply is stored under
  variables          append-only map of captured replies
  last_message_at    touched on every inbound message

Nothing expires: an abandoned conversation keeps its state until the
contact writes again or the tenant activates another flow.
"""

from __future__ import annotations
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from flowengine.graph.nodes import DEFAULT_VARIABLE_NAME


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


StateKey = tuple[int, str]


class ContactFlowState(BaseModel):
    flow_id:           int
    current_node_id:   str | None = None
    waiting_for_input: bool = False
    variable_to_save:  str | None = None
    variables:         dict[str, str] = Field(default_factory=dict)
    last_message_at:   datetime = Field(default_factory=_utcnow)

    def touch(self) -> None:
        self.last_message_at = _utcnow()

    def enter(self, node_id: str) -> None:
        """Mark `node_id` current; a half-finished send never leaves us 'waiting'."""
        self.current_node_id = node_id
        self.waiting_for_input = False

    def await_input(self, variable_name: str) -> None:
        self.waiting_for_input = True
        self.variable_to_save = variable_name

    def bind_input(self, text: str) -> str:
        """Store the reply under the pending variable and return its name."""
        name = self.variable_to_save or DEFAULT_VARIABLE_NAME
        self.variables[name] = text
        self.waiting_for_input = False
        return name


def state_key(tenant_id: int, contact_address: str) -> StateKey:
    return (tenant_id, contact_address)
