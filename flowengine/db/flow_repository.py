"""
flowengine/db/flow_repository.py
────────────────────────────────
Where the executor gets "the tenant's active flow" from.

If the editor ever leaves more than one flow active, the most recently
updated one wins.
"""

from __future__ import annotations
from typing import Callable, Protocol

from sqlalchemy import select

from flowengine.graph.flow import Flow, FlowStatus


class FlowRepository(Protocol):
    async def get_active_flow(self, tenant_id: int) -> Flow | None: ...


class SqlFlowRepository:
    def __init__(self, session_factory: Callable | None = None):
        if session_factory is None:
            from flowengine.db.engine import read_session
            session_factory = read_session
        self._session = session_factory

    async def get_active_flow(self, tenant_id: int) -> Flow | None:
        from flowengine.db.models import FlowRecord

        stmt = (
            select(FlowRecord)
            .where(FlowRecord.tenant_id == tenant_id, FlowRecord.status == FlowStatus.ACTIVE)
            .order_by(FlowRecord.updated_at.desc())
            .limit(1)
        )
        async with self._session() as session:
            record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            return None
        return Flow.model_validate(record)


class InMemoryFlowRepository:
    """Flows held in a list; used by the console CLI and the tests."""

    def __init__(self, flows: list[Flow] | None = None):
        self.flows: list[Flow] = list(flows or [])

    def add(self, flow: Flow) -> Flow:
        self.flows = [f for f in self.flows if f.id != flow.id]
        self.flows.append(flow)
        return flow

    async def get_active_flow(self, tenant_id: int) -> Flow | None:
        active = [f for f in self.flows if f.tenant_id == tenant_id and f.status == FlowStatus.ACTIVE]
        if not active:
            return None
        # updated_at may be missing on hand-built flows; keep insertion order then
        return max(reversed(active), key=lambda f: f.updated_at.timestamp() if f.updated_at else 0.0)
