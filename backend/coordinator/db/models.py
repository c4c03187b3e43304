"""SQLAlchemy ORM models for the investigation coordinator.

Agents and their metrics are owned by the agent registry; this service only
reads them. Investigations and pending investigations are written here.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def new_investigation_id() -> str:
    return f"INV-{uuid.uuid4().hex}"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InvestigationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    COMPLETED_WITH_ANALYSIS = "completed_with_analysis"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_advance_to(self, target: "InvestigationStatus") -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL = frozenset({
    InvestigationStatus.COMPLETED,
    InvestigationStatus.COMPLETED_WITH_ANALYSIS,
    InvestigationStatus.FAILED,
})

_TRANSITIONS: dict[InvestigationStatus, frozenset[InvestigationStatus]] = {
    InvestigationStatus.PENDING: frozenset({InvestigationStatus.ACTIVE, InvestigationStatus.FAILED}),
    InvestigationStatus.ACTIVE: _TERMINAL,
    InvestigationStatus.COMPLETED: frozenset(),
    InvestigationStatus.COMPLETED_WITH_ANALYSIS: frozenset(),
    InvestigationStatus.FAILED: frozenset(),
}


class PendingStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# ── Agents (read-only here) ───────────────────────────────────────────


class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="offline")  # online | offline | ...
    owner: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    websocket_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    websocket_connected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AgentMetrics(Base):
    """One metrics snapshot reported by an agent."""
    __tablename__ = "agent_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    cpu_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    memory_mb: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    kernel_version: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    os_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    load_averages: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    network_stats: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    filesystem_info: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    block_devices: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # relationships
    agent: Mapped["Agent"] = relationship(lazy="raise")

    __table_args__ = (
        Index("ix_agent_metrics_agent_recorded", "agent_id", "recorded_at"),
    )


# ── Investigations ────────────────────────────────────────────────────


class Investigation(Base):
    __tablename__ = "investigations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    investigation_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, default=new_investigation_id
    )
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.id"), nullable=False
    )
    issue: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), default=Priority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(32), default=InvestigationStatus.PENDING.value)
    episode_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    tensorzero_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    initiated_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # "metadata" is reserved on declarative classes, so the attribute is renamed.
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    initiated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # relationships
    agent: Mapped["Agent"] = relationship(lazy="selectin")

    __table_args__ = (
        Index("ix_investigations_agent_created", "agent_id", "created_at"),
    )


class PendingInvestigation(Base):
    """Work handed to a remote agent; the agent fills in the result columns."""
    __tablename__ = "pending_investigations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    investigation_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("investigations.investigation_id"), nullable=False, index=True
    )
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    diagnostic_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    episode_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=PendingStatus.PENDING.value)
    command_results: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
