"""FlowExecutor: starting, pausing, resuming and ending conversations."""
from __future__ import annotations
import asyncio

import pytest

from flowengine.db.flow_repository import InMemoryFlowRepository
from flowengine.engine.executor import FlowExecutor
from flowengine.errors import NotConnectedError
from flowengine.graph.flow import FlowStatus
from flowengine.store import InMemoryStore

from conftest import CONTACT, TENANT, RecordingSender, edge, inbound, make_flow, send, wait


def build(*flows, sender: RecordingSender | None = None):
    repo = InMemoryFlowRepository(list(flows))
    sender = sender or RecordingSender()
    executor = FlowExecutor(repo, sender, InMemoryStore())
    return executor, repo, sender


async def state_of(executor: FlowExecutor, contact: str = CONTACT):
    return await executor.states.get((TENANT, contact))


@pytest.mark.asyncio
async def test_scenario_hi_name_hello(scenario_flow):
    executor, _, sender = build(scenario_flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))

    assert sender.texts == ["Hi", "Name?"]
    state = await state_of(executor)
    assert state.waiting_for_input is True
    assert state.variable_to_save == "name"
    assert state.current_node_id == "B"

    await executor.process_incoming_message(TENANT, CONTACT, inbound("Ana"))

    # no interpolation: the text goes out verbatim
    assert sender.texts == ["Hi", "Name?", "Hello {name}"]
    state = await state_of(executor)
    assert state.variables == {"name": "Ana"}
    assert state.waiting_for_input is False
    assert state.current_node_id == "C"


@pytest.mark.asyncio
async def test_extended_text_reply_is_captured(scenario_flow):
    executor, _, _ = build(scenario_flow)
    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))

    reply = {"key": {"remoteJid": CONTACT}, "message": {"extendedTextMessage": {"text": "Bia"}}}
    await executor.process_incoming_message(TENANT, CONTACT, reply)

    assert (await state_of(executor)).variables["name"] == "Bia"


@pytest.mark.asyncio
async def test_no_start_node_creates_nothing():
    cycle = make_flow([send("A", "1"), send("B", "2")], [edge("A", "B"), edge("B", "A")])
    executor, _, sender = build(cycle)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hi"))

    assert sender.sent == []
    assert await state_of(executor) is None


@pytest.mark.asyncio
async def test_ambiguous_start_creates_nothing():
    two_roots = make_flow([send("A", "1"), send("B", "2")], [])
    executor, _, sender = build(two_roots)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hi"))

    assert sender.sent == []
    assert await state_of(executor) is None


@pytest.mark.asyncio
async def test_waiting_node_only_follows_received_edge():
    flow = make_flow(
        [wait("W", "Your email?", "email"), send("D", "default branch"), send("R", "thanks")],
        [edge("W", "D"), edge("W", "R", "source-received")],
    )
    executor, _, sender = build(flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("start"))
    assert sender.texts == ["Your email?"]

    await executor.process_incoming_message(TENANT, CONTACT, inbound("a@b.co"))
    assert sender.texts == ["Your email?", "thanks"]
    assert "default branch" not in sender.texts


@pytest.mark.asyncio
async def test_reply_without_received_edge_ends_silently():
    flow = make_flow([send("A", "Hi"), wait("B", "Anything else?", "extra")], [edge("A", "B")])
    executor, _, sender = build(flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hi"))
    await executor.process_incoming_message(TENANT, CONTACT, inbound("no"))

    assert sender.texts == ["Hi", "Anything else?"]
    state = await state_of(executor)
    assert state.variables == {"extra": "no"}
    assert state.waiting_for_input is False
    assert state.current_node_id == "B"


@pytest.mark.asyncio
async def test_flow_switch_restarts_contact_with_fresh_variables(scenario_flow):
    executor, repo, sender = build(scenario_flow)
    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))
    state = await state_of(executor)
    state.variables["leftover"] = "x"
    await executor.states.set((TENANT, CONTACT), state)

    repo.add(scenario_flow.model_copy(update={"status": FlowStatus.INACTIVE}))
    repo.add(make_flow([send("S", "New campaign!"), wait("Q", "Email?", "email")], [edge("S", "Q")], flow_id=20))

    await executor.process_incoming_message(TENANT, CONTACT, inbound("Ana"))

    assert sender.texts[-2:] == ["New campaign!", "Email?"]
    state = await state_of(executor)
    assert state.flow_id == 20
    assert state.variables == {}
    assert state.variable_to_save == "email"


@pytest.mark.asyncio
async def test_dangling_edge_stops_after_sending():
    flow = make_flow([send("A", "only message")], [edge("A", "ghost")])
    executor, _, sender = build(flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hi"))

    assert sender.texts == ["only message"]
    state = await state_of(executor)
    assert state.current_node_id == "A"
    assert state.waiting_for_input is False


@pytest.mark.asyncio
async def test_unknown_node_kind_is_terminal():
    flow = make_flow(
        [send("A", "before"), {"id": "X", "type": "delay", "data": {"seconds": 5}}, send("Z", "after")],
        [edge("A", "X"), edge("X", "Z")],
    )
    executor, _, sender = build(flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hi"))

    assert sender.texts == ["before"]
    assert (await state_of(executor)).current_node_id == "X"


@pytest.mark.asyncio
async def test_finished_conversation_restarts_from_the_top(scenario_flow):
    executor, _, sender = build(scenario_flow)
    for text in ("hello", "Ana", "hello again"):
        await executor.process_incoming_message(TENANT, CONTACT, inbound(text))

    assert sender.texts == ["Hi", "Name?", "Hello {name}", "Hi", "Name?"]


@pytest.mark.asyncio
async def test_no_active_flow_is_a_noop(scenario_flow):
    draft = scenario_flow.model_copy(update={"status": FlowStatus.DRAFT})
    executor, _, sender = build(draft)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))

    assert sender.sent == []
    assert await state_of(executor) is None


@pytest.mark.asyncio
async def test_flow_with_null_elements_is_a_noop(scenario_flow):
    executor, _, sender = build(scenario_flow.model_copy(update={"elements": None}))
    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))
    assert sender.sent == []


@pytest.mark.asyncio
async def test_send_failure_never_escapes(scenario_flow):
    executor, _, _ = build(scenario_flow, sender=RecordingSender(fail_with=NotConnectedError(TENANT)))

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))

    # the node was marked current before the send was attempted
    state = await state_of(executor)
    assert state.current_node_id == "A"
    assert state.waiting_for_input is False


@pytest.mark.asyncio
async def test_contacts_and_tenants_are_isolated(scenario_flow):
    other_tenant_flow = scenario_flow.model_copy(update={"id": 99, "tenant_id": 2})
    executor, _, sender = build(scenario_flow, other_tenant_flow)

    await executor.process_incoming_message(TENANT, CONTACT, inbound("hello"))
    await executor.process_incoming_message(2, CONTACT, inbound("hello"))
    await executor.process_incoming_message(TENANT, CONTACT, inbound("Ana"))

    assert (await executor.states.get((TENANT, CONTACT))).variables == {"name": "Ana"}
    assert (await executor.states.get((2, CONTACT))).waiting_for_input is True


class SlowSender(RecordingSender):
    async def send_message(self, tenant_id, address, payload):
        await asyncio.sleep(0.01)
        return await super().send_message(tenant_id, address, payload)


@pytest.mark.asyncio
async def test_concurrent_replies_from_one_contact_are_serialized():
    flow = make_flow(
        [wait("Q1", "First?", "first"), wait("Q2", "Second?", "second"), send("END", "done")],
        [edge("Q1", "Q2", "source-received"), edge("Q2", "END", "source-received")],
    )
    executor, _, sender = build(flow, sender=SlowSender())
    await executor.process_incoming_message(TENANT, CONTACT, inbound("start"))

    await asyncio.gather(
        executor.process_incoming_message(TENANT, CONTACT, inbound("one")),
        executor.process_incoming_message(TENANT, CONTACT, inbound("two")),
    )

    state = await state_of(executor)
    assert state.variables == {"first": "one", "second": "two"}
    assert sender.texts == ["First?", "Second?", "done"]
    assert len(executor._locks) == 0


@pytest.mark.asyncio
async def test_long_straight_line_flow_does_not_recurse():
    count = 1200
    nodes = [send(f"n{i}", str(i)) for i in range(count)]
    edges = [edge(f"n{i}", f"n{i + 1}") for i in range(count - 1)]
    executor, _, sender = build(make_flow(nodes, edges))

    await executor.process_incoming_message(TENANT, CONTACT, inbound("go"))

    assert len(sender.sent) == count
