"""
flowengine/db/models.py
───────────────────────
SQLAlchemy ORM models.

Only the `flows` table matters to the engine.  Rows are created and edited
by the flow editor (outside this package); the executor reads the single
active flow of a tenant.  Users and campaigns live in the application's
own schema and are referenced by id only.
"""

from __future__ import annotations
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum as SAEnum, Index, Integer, JSON, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from flowengine.graph.flow import FlowStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# FlowRecord  –  one authored conversation graph
# ---------------------------------------------------------------------------
class FlowRecord(Base):
    __tablename__ = "flows"
    __table_args__ = (
        Index("ix_flows_user_status_updated", "user_id", "status", "updated_at"),
    )

    id:          Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id:   Mapped[int] = mapped_column("user_id", Integer, nullable=False, index=True)
    campaign_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    name:   Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[FlowStatus] = mapped_column(
        SAEnum(FlowStatus, name="flow_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=FlowStatus.DRAFT,
    )

    # {"nodes": [...], "edges": [...]} exactly as the editor saved it
    elements: Mapped[dict | None] = mapped_column(JSON, nullable=False, default=lambda: {"nodes": [], "edges": []})

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<FlowRecord {self.id} {self.name!r} ({self.status})>"
