"""FastAPI dependencies for the clients built at startup.

The lifespan in ``coordinator.main`` constructs one shared httpx client and the
service clients on top of it and stores them on ``app.state``; handlers get
them from here so tests can swap them through ``dependency_overrides``.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coordinator.config import AppConfig, settings
from coordinator.db import async_session_factory
from coordinator.services.agent_wait import CompletionWaiter
from coordinator.services.analytics import AnalyticsClient
from coordinator.services.orchestrator import InvestigationOrchestrator
from coordinator.services.reasoning import ReasoningClient


def get_settings() -> AppConfig:
    return settings


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_reasoning_client(request: Request) -> ReasoningClient:
    return request.app.state.reasoning_client


def get_analytics_client(request: Request) -> AnalyticsClient:
    return request.app.state.analytics_client


def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    reasoning: ReasoningClient = Depends(get_reasoning_client),
    config: AppConfig = Depends(get_settings),
) -> InvestigationOrchestrator:
    waiter = CompletionWaiter(
        session_factory,
        poll_interval=config.AGENT_POLL_INTERVAL_SECONDS,
        budget=config.INTERACTIVE_WAIT_SECONDS,
    )
    return InvestigationOrchestrator(session_factory, reasoning, waiter)


def get_background_waiter(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    config: AppConfig = Depends(get_settings),
) -> CompletionWaiter:
    return CompletionWaiter(
        session_factory,
        poll_interval=config.BACKGROUND_POLL_INTERVAL_SECONDS,
        budget=config.BACKGROUND_WAIT_SECONDS,
        retry_transient=True,
    )
