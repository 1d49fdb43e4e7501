"""
flowengine/graph/nodes.py
─────────────────────────
Node variants of an authored flow.

Raw nodes come from the flow editor as dicts shaped like
    {"id": "n1", "type": "sendMessage", "data": {...}, "position": {...}}

`parse_node` maps the `type` string onto one variant of the `Node` union.
Kinds this engine does not know become `UnknownNode` instead of failing
validation, so a flow authored with a newer editor still loads.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeKind(str, Enum):
    SEND_MESSAGE   = "sendMessage"
    WAIT_FOR_INPUT = "waitForInput"


# Names used by earlier versions of the flow editor
KIND_ALIASES: dict[str, NodeKind] = {
    "textMessage": NodeKind.SEND_MESSAGE,
    "waitInput":   NodeKind.WAIT_FOR_INPUT,
}

DEFAULT_VARIABLE_NAME = "userInput"


# ── node payloads ──────────────────────────────────────────────────────────

class SendMessageData(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Any = None


class WaitForInputData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message:       str | None = None               # optional prompt
    variable_name: str = Field(DEFAULT_VARIABLE_NAME, alias="variableName")

    @field_validator("variable_name", mode="before")
    @classmethod
    def _default_when_blank(cls, v: Any) -> Any:
        return v or DEFAULT_VARIABLE_NAME


# ── variants ───────────────────────────────────────────────────────────────

class _BaseNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class SendMessageNode(_BaseNode):
    kind: Literal[NodeKind.SEND_MESSAGE] = NodeKind.SEND_MESSAGE
    data: SendMessageData = Field(default_factory=SendMessageData)


class WaitForInputNode(_BaseNode):
    kind: Literal[NodeKind.WAIT_FOR_INPUT] = NodeKind.WAIT_FOR_INPUT
    data: WaitForInputData = Field(default_factory=WaitForInputData)


class UnknownNode(_BaseNode):
    kind: str
    data: dict[str, Any] = Field(default_factory=dict)


Node = Union[SendMessageNode, WaitForInputNode, UnknownNode]

_VARIANTS: dict[NodeKind, type[_BaseNode]] = {
    NodeKind.SEND_MESSAGE:   SendMessageNode,
    NodeKind.WAIT_FOR_INPUT: WaitForInputNode,
}


def resolve_kind(raw_kind: Any) -> NodeKind | None:
    if isinstance(raw_kind, NodeKind):
        return raw_kind
    if raw_kind in KIND_ALIASES:
        return KIND_ALIASES[raw_kind]
    try:
        return NodeKind(raw_kind)
    except ValueError:
        return None


def parse_node(raw: dict[str, Any] | Node) -> Node:
    """Build the typed variant for one raw editor node."""
    if isinstance(raw, (SendMessageNode, WaitForInputNode, UnknownNode)):
        return raw

    raw_kind = raw.get("type", raw.get("kind"))
    data = raw.get("data") or {}
    kind = resolve_kind(raw_kind)
    if kind is None:
        return UnknownNode(id=raw["id"], kind=str(raw_kind), data=data if isinstance(data, dict) else {})
    return _VARIANTS[kind](id=raw["id"], data=data)
