"""
flowengine/graph/flow.py
────────────────────────
The authored automation: a Flow owns one graph of nodes + edges.

Edges carry a `sourceHandle` naming which output of the source node they
leave from. Two handles matter to the executor:

    source-bottom     default output of every node
    source-received   fires on a waitForInput node once the reply arrived
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flowengine.errors import AmbiguousStartNodeError, MissingStartNodeError
from flowengine.graph.nodes import Node, parse_node

DEFAULT_HANDLE  = "source-bottom"
RECEIVED_HANDLE = "source-received"


class FlowStatus(str, Enum):
    DRAFT    = "draft"
    ACTIVE   = "active"
    INACTIVE = "inactive"


class Edge(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id:            str | None = None
    source:        str
    source_handle: str | None = Field(None, alias="sourceHandle")
    target:        str


class FlowGraph(BaseModel):
    """`{nodes, edges}` payload stored in `flows.elements`."""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @field_validator("nodes", mode="before")
    @classmethod
    def _parse_nodes(cls, v: Any) -> Any:
        if v is None:
            return []
        return [parse_node(n) for n in v]

    @field_validator("edges", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def get_node(self, node_id: str | None) -> Node | None:
        if node_id is None:
            return None
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_node_candidates(self) -> list[str]:
        """Ids of nodes no edge points at, in graph order."""
        targets = {edge.target for edge in self.edges}
        return [node.id for node in self.nodes if node.id not in targets]

    def next_node_id(self, source_node_id: str, handle: str = DEFAULT_HANDLE) -> str | None:
        """
        Target of the first edge leaving `source_node_id` through `handle`.

        When the editor produced several edges for the same handle the first
        one in graph order wins.
        """
        for edge in self.edges:
            if edge.source == source_node_id and edge.source_handle == handle:
                return edge.target
        return None


class Flow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          int
    tenant_id:   int
    campaign_id: int | None = None
    name:        str = ""
    status:      FlowStatus = FlowStatus.DRAFT
    elements:    FlowGraph | None = Field(default_factory=FlowGraph)
    created_at:  datetime | None = None
    updated_at:  datetime | None = None

    def find_start_node(self) -> Node:
        """
        The unique node without incoming edges.

        Raises MissingStartNodeError / AmbiguousStartNodeError; graphs with
        several entry points are not guessed at.
        """
        graph = self.elements or FlowGraph()
        candidates = graph.start_node_candidates()
        if not candidates:
            raise MissingStartNodeError(self.id)
        if len(candidates) > 1:
            raise AmbiguousStartNodeError(self.id, candidates)
        return graph.get_node(candidates[0])
