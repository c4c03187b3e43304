"""Shared pytest fixtures for coordinator tests.

Provides:
- Async test database (in-memory SQLite, fresh per test)
- Fakes for the identity provider, reasoning service and analytics store
- A simulated remote agent that answers pending investigations
- Test client (httpx AsyncClient on the FastAPI app)
- Factory helpers for agents, metrics snapshots and investigations
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Force test database
os.environ["IC_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["IC_IDENTITY_URL"] = "http://identity.test"
os.environ["IC_REASONING_URL"] = "http://reasoning.test"
os.environ["IC_ANALYTICS_URL"] = "http://analytics.test"

from coordinator.api import deps  # noqa: E402
from coordinator.core.errors import Unauthorized  # noqa: E402
from coordinator.db import get_db  # noqa: E402
from coordinator.db.engine import Base, build_engine  # noqa: E402
from coordinator.db.models import (  # noqa: E402
    Agent,
    AgentMetrics,
    Investigation,
    PendingInvestigation,
    PendingStatus,
)
from coordinator.main import app  # noqa: E402
from coordinator.services.agent_wait import CompletionWaiter  # noqa: E402
from coordinator.services.auth import AuthenticatedUser, get_identity_client  # noqa: E402
from coordinator.services.orchestrator import InvestigationOrchestrator  # noqa: E402
from coordinator.services.reasoning import ReasoningReply  # noqa: E402

GIB = 1024 ** 3

ALICE = AuthenticatedUser(id="user-alice", email="alice@example.com")
BOB = AuthenticatedUser(id="user-bob", email="bob@example.com")

ALICE_HEADERS = {"Authorization": "Bearer token-alice"}
BOB_HEADERS = {"Authorization": "Bearer token-bob"}

SAMPLE_METRICS = {
    "cpu_percent": 42.5,
    "memory_mb": 2048.0,
    "kernel_version": "6.1.0-18-amd64",
    "ip_address": "10.0.0.12",
    "os_info": {"name": "web-01", "platform_version": "Debian 12", "kernel_arch": "x86_64"},
    "load_averages": {"load1": 0.5, "load5": 0.75, "load15": 1.0},
    "network_stats": {"network_in_kbps": 120.0, "network_out_kbps": 30.5},
    "filesystem_info": [{"mountpoint": "/", "used": 20 * GIB, "total": 80 * GIB}],
    "block_devices": [{"name": "sda", "size": 100 * GIB}],
}

DIAGNOSTIC_REPLY = (
    '{"response_type": "diagnostic", "reasoning": "check disk usage", '
    '"commands": [{"id": "df", "command": "df -h"}]}'
)


# ── Fakes ─────────────────────────────────────────────────────────────


class FakeIdentity:
    """Maps bearer tokens to users; anything else is rejected."""

    def __init__(self):
        self.users = {"token-alice": ALICE, "token-bob": BOB}
        self.seen_tokens: list[str] = []

    async def get_user(self, token: str) -> AuthenticatedUser:
        self.seen_tokens.append(token)
        user = self.users.get(token)
        if user is None:
            raise Unauthorized("Invalid token")
        return user


class FakeReasoning:
    """Returns queued replies in order and records every conversation sent."""

    def __init__(self):
        self.replies: list = []
        self.calls: list[list[dict]] = []

    def queue(self, content: str, episode_id: Optional[str] = "episode-1") -> None:
        self.replies.append(ReasoningReply(content=content, episode_id=episode_id))

    def queue_error(self, exc: Exception) -> None:
        self.replies.append(exc)

    async def chat(self, messages: list[dict]) -> ReasoningReply:
        self.calls.append([dict(m) for m in messages])
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeAnalytics:
    """In-memory stand-in for the analytics store."""

    def __init__(self):
        self.episodes: dict[str, list[dict]] = {}
        self.inferences: dict[str, dict] = {}
        self.feedback_rows: dict[str, list[dict]] = {}
        self.episode_lookups: list[str] = []

    async def episode_inferences(self, episode_id: str):
        self.episode_lookups.append(episode_id)
        return self.episodes.get(episode_id)

    async def inference_count(self, episode_id: str) -> int:
        inferences = await self.episode_inferences(episode_id)
        return len(inferences) if inferences else 0

    async def inference(self, inference_id: str):
        return self.inferences.get(inference_id)

    async def feedback(self, inference_id: str) -> list[dict]:
        return self.feedback_rows.get(inference_id, [])


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class AgentSimulator:
    """Plays the remote agent: whenever the coordinator sleeps between polls,
    pending rows are answered according to ``behaviour``.

    behaviour: "complete" | "fail" | "ignore"
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: FakeClock):
        self.session_factory = session_factory
        self.clock = clock
        self.behaviour = "complete"
        self.command_results = [{"id": "df", "output": "/dev/sda1 80G 20G 60G 25% /", "exit_code": 0}]
        self.error_message = "command not permitted"
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.clock.advance(seconds)
        if self.behaviour == "ignore":
            return
        async with self.session_factory() as session:
            result = await session.execute(
                select(PendingInvestigation).where(
                    PendingInvestigation.status == PendingStatus.PENDING.value
                )
            )
            for pending in result.scalars().all():
                if self.behaviour == "complete":
                    pending.status = PendingStatus.COMPLETED.value
                    pending.command_results = self.command_results
                else:
                    pending.status = PendingStatus.FAILED.value
                    pending.error_message = self.error_message
                pending.completed_at = datetime.now(timezone.utc)
            await session.commit()


# ── Database fixtures ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for assertions; it never holds a transaction across awaits of the app."""
    async with session_factory() as session:
        yield session


# ── Fake collaborators ────────────────────────────────────────────────


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()


@pytest.fixture
def analytics() -> FakeAnalytics:
    return FakeAnalytics()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def agent_sim(session_factory, clock) -> AgentSimulator:
    return AgentSimulator(session_factory, clock)


@pytest.fixture
def orchestrator(session_factory, reasoning, agent_sim, clock) -> InvestigationOrchestrator:
    waiter = CompletionWaiter(
        session_factory,
        poll_interval=2.0,
        budget=120.0,
        clock=clock,
        sleep=agent_sim.sleep,
    )
    return InvestigationOrchestrator(session_factory, reasoning, waiter)


@pytest.fixture
def background_waiter(session_factory, clock) -> CompletionWaiter:
    async def _sleep(seconds: float) -> None:
        clock.advance(seconds)

    return CompletionWaiter(
        session_factory,
        poll_interval=1.0,
        budget=600.0,
        retry_transient=True,
        clock=clock,
        sleep=_sleep,
    )


@pytest_asyncio.fixture
async def client(
    session_factory, identity, reasoning, analytics, orchestrator, background_waiter
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with every external dependency overridden."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.dependency_overrides[deps.get_reasoning_client] = lambda: reasoning
    app.dependency_overrides[deps.get_analytics_client] = lambda: analytics
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[deps.get_background_waiter] = lambda: background_waiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Factory helpers ───────────────────────────────────────────────────


class Seeder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def agent(
        self,
        agent_id: str = "agent-1",
        owner: str = ALICE.id,
        connected: bool = True,
        name: str = "web-01",
    ) -> Agent:
        async with self.session_factory() as session:
            agent = Agent(
                id=agent_id,
                name=name,
                status="online" if connected else "offline",
                owner=owner,
                websocket_connected=connected,
                websocket_connected_at=datetime.now(timezone.utc) if connected else None,
            )
            session.add(agent)
            await session.commit()
            return agent

    async def metrics(
        self,
        agent_id: str = "agent-1",
        recorded_at: Optional[datetime] = None,
        **overrides,
    ) -> AgentMetrics:
        values = {**SAMPLE_METRICS, **overrides}
        async with self.session_factory() as session:
            row = AgentMetrics(
                agent_id=agent_id,
                recorded_at=recorded_at or datetime.now(timezone.utc),
                **values,
            )
            session.add(row)
            await session.commit()
            return row

    async def investigation(
        self,
        agent_id: str = "agent-1",
        investigation_id: Optional[str] = None,
        status: str = "completed",
        episode_id: Optional[str] = None,
        age_minutes: int = 0,
        issue: str = "High load",
    ) -> Investigation:
        created = datetime(2026, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=age_minutes)
        async with self.session_factory() as session:
            inv = Investigation(
                agent_id=agent_id,
                issue=issue,
                priority="medium",
                status=status,
                episode_id=episode_id,
                initiated_by="backend",
                initiated_at=created,
                created_at=created,
                updated_at=created,
                meta={"initial_issue": issue},
            )
            if investigation_id:
                inv.investigation_id = investigation_id
            session.add(inv)
            await session.commit()
            return inv


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
