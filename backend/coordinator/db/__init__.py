"""Relational store: engine, session factory and ORM models."""

from .engine import (
    Base,
    async_session_factory,
    build_engine,
    dispose_db,
    engine,
    get_db,
    init_db,
)
from .models import Agent, AgentMetrics, Investigation, PendingInvestigation

__all__ = [
    "Base",
    "build_engine",
    "engine",
    "async_session_factory",
    "get_db",
    "init_db",
    "dispose_db",
    "Agent",
    "AgentMetrics",
    "Investigation",
    "PendingInvestigation",
]
