"""Investigation orchestrator: drives one diagnostic session end to end.

Flow for ``create_investigation``:

1. Check the agent exists and is connected, load its latest metrics snapshot.
2. Commit an ``active`` investigation row.
3. First reasoning turn with the system-information block plus the issue.
4. If the reply is a diagnostic request: hand the payload to the agent through
   a pending-investigation row, poll for its results, then run a second
   reasoning turn with those results.
5. One final update of the investigation row with the terminal status.

Errors before the commit in step 2 are request failures. After the commit the
saga always settles the row: failures in step 4 become ``status=failed`` and
are reported in the result, not raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coordinator.core.errors import (
    AgentUnavailable,
    CoordinatorError,
    InternalError,
    NoMetrics,
    NotFound,
    UpstreamError,
)
from coordinator.db.models import (
    Agent,
    AgentMetrics,
    Investigation,
    InvestigationStatus,
    PendingInvestigation,
    PendingStatus,
    Priority,
    _utcnow,
    new_investigation_id,
)
from coordinator.schemas.investigation import (
    ConversationTranscript,
    InvestigationMetadata,
    InvestigationResult,
    SagaError,
)
from coordinator.services.agent_wait import CompletionWaiter
from coordinator.services.reasoning import (
    DiagnosticRequest,
    ReasoningClient,
    ReasoningReply,
    Unparseable,
    parse_reply,
    results_follow_up,
)
from coordinator.services.system_info import format_system_info

logger = logging.getLogger(__name__)

DEFAULT_INITIATOR = "backend"


def snapshot_metrics(metrics: AgentMetrics) -> dict[str, Any]:
    """JSON-safe copy of a metrics row for the investigation metadata."""
    snapshot: dict[str, Any] = {}
    for column in AgentMetrics.__table__.columns:
        value = getattr(metrics, column.key)
        snapshot[column.key] = value.isoformat() if isinstance(value, datetime) else value
    return snapshot


@dataclass
class _Outcome:
    status: InvestigationStatus
    diagnostic: Optional[dict] = None
    agent_results: Any = None
    continuation: Optional[str] = None
    error: Optional[SagaError] = None


class InvestigationOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reasoning: ReasoningClient,
        waiter: CompletionWaiter,
    ):
        self.session_factory = session_factory
        self.reasoning = reasoning
        self.waiter = waiter

    async def create_investigation(
        self,
        agent_id: str,
        issue: str,
        priority: Priority = Priority.MEDIUM,
        initiated_by: Optional[str] = None,
    ) -> InvestigationResult:
        logger.info(f"Starting investigation for agent {agent_id}: {issue[:80]}")
        investigation_id, snapshot = await self._open(agent_id, issue, priority, initiated_by)

        initial_messages = [
            {"role": "user", "content": format_system_info(snapshot) + "\n" + issue}
        ]
        try:
            first = await self.reasoning.chat(initial_messages)
        except UpstreamError as e:
            outcome = _Outcome(
                status=InvestigationStatus.FAILED,
                error=SagaError(type=e.kind, message=e.message),
            )
            await self._finalize(investigation_id, issue, snapshot, outcome, None)
            raise UpstreamError(
                e.message,
                details={"investigation_id": investigation_id, "reason": e.details},
            ) from e
        except Exception as e:
            logger.exception(f"{investigation_id}: unexpected error in first reasoning turn")
            outcome = _Outcome(
                status=InvestigationStatus.FAILED,
                error=SagaError(type=InternalError.__name__, message=str(e)),
            )
            await self._finalize(investigation_id, issue, snapshot, outcome, None)
            raise InternalError(
                "Reasoning turn failed",
                details={"investigation_id": investigation_id, "reason": str(e)},
            ) from e

        parsed = parse_reply(first.content)
        if isinstance(parsed, DiagnosticRequest):
            logger.info(f"{investigation_id}: diagnostic reply, dispatching to agent {agent_id}")
            outcome = await self._run_diagnostics(
                investigation_id, agent_id, parsed.payload, first, initial_messages
            )
        elif isinstance(parsed, Unparseable):
            logger.error(f"{investigation_id}: could not parse reasoning reply as JSON: {parsed.error}")
            outcome = _Outcome(
                status=InvestigationStatus.FAILED,
                error=SagaError(
                    type=InternalError.__name__,
                    message=f"Unparseable diagnostic reply: {parsed.error}",
                ),
            )
        else:
            outcome = _Outcome(status=InvestigationStatus.COMPLETED)

        await self._finalize(investigation_id, issue, snapshot, outcome, first)
        logger.info(f"{investigation_id}: finished with status {outcome.status.value}")

        return InvestigationResult(
            investigation_id=investigation_id,
            agent_id=agent_id,
            status=outcome.status.value,
            initial_response=first.content,
            diagnostic_response=outcome.diagnostic,
            agent_execution_results=outcome.agent_results,
            continuation_response=outcome.continuation,
            episode_id=first.episode_id,
            message=(
                f"Investigation {investigation_id} finished with status "
                f"{outcome.status.value} for agent {agent_id}"
            ),
            full_flow_completed=bool(
                outcome.diagnostic is not None
                and outcome.agent_results is not None
                and outcome.continuation is not None
            ),
            error=outcome.error,
        )

    async def _open(
        self,
        agent_id: str,
        issue: str,
        priority: Priority,
        initiated_by: Optional[str],
    ) -> tuple[str, dict[str, Any]]:
        """Validate the agent and commit the active investigation row."""
        async with self.session_factory() as session:
            agent = await session.get(Agent, agent_id)
            if agent is None:
                raise NotFound("Agent not found")
            if not agent.websocket_connected:
                raise AgentUnavailable(
                    details="Agent must be online and connected to receive investigations"
                )

            result = await session.execute(
                select(AgentMetrics)
                .where(AgentMetrics.agent_id == agent_id)
                .order_by(AgentMetrics.recorded_at.desc(), AgentMetrics.id.desc())
                .limit(1)
            )
            metrics = result.scalar_one_or_none()
            if metrics is None:
                raise NoMetrics()
            snapshot = snapshot_metrics(metrics)

            now = _utcnow()
            investigation = Investigation(
                investigation_id=new_investigation_id(),
                agent_id=agent_id,
                issue=issue,
                priority=Priority(priority).value,
                status=InvestigationStatus.ACTIVE.value,
                initiated_by=initiated_by or DEFAULT_INITIATOR,
                initiated_at=now,
                meta=InvestigationMetadata(
                    agent_metrics_snapshot=snapshot, initial_issue=issue
                ).model_dump(),
            )
            session.add(investigation)
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to create investigation record: {e}")
                raise InternalError("Failed to create investigation record", details=str(e)) from e

        logger.info(f"Created investigation {investigation.investigation_id}")
        return investigation.investigation_id, snapshot

    async def _run_diagnostics(
        self,
        investigation_id: str,
        agent_id: str,
        payload: dict,
        first: ReasoningReply,
        initial_messages: list[dict],
    ) -> _Outcome:
        outcome = _Outcome(status=InvestigationStatus.FAILED, diagnostic=payload)
        try:
            pending_id = await self._dispatch(investigation_id, agent_id, payload, first.episode_id)
            pending = await self.waiter.wait_for_pending(pending_id)
            outcome.agent_results = pending.command_results
            logger.info(f"{investigation_id}: agent results received, continuing conversation")

            follow_up = await self.reasoning.chat(
                results_follow_up(initial_messages, first.content, pending.command_results)
            )
            outcome.continuation = follow_up.content
            outcome.status = InvestigationStatus.COMPLETED_WITH_ANALYSIS
        except CoordinatorError as e:
            logger.error(f"{investigation_id}: diagnostic flow failed: {e.kind}: {e.message}")
            outcome.error = SagaError(type=e.kind, message=e.message)
        except Exception as e:
            logger.exception(f"{investigation_id}: unexpected error in diagnostic flow")
            outcome.error = SagaError(type=InternalError.__name__, message=str(e))
        return outcome

    async def _dispatch(
        self, investigation_id: str, agent_id: str, payload: dict, episode_id: Optional[str]
    ) -> str:
        """Create the pending investigation the agent picks up."""
        async with self.session_factory() as session:
            pending = PendingInvestigation(
                investigation_id=investigation_id,
                agent_id=agent_id,
                diagnostic_payload=payload,
                episode_id=episode_id,
                status=PendingStatus.PENDING.value,
            )
            session.add(pending)
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise InternalError(
                    f"Failed to create pending investigation: {e}", details=str(e)
                ) from e
        logger.info(f"{investigation_id}: created pending investigation {pending.id}")
        return pending.id

    async def _finalize(
        self,
        investigation_id: str,
        issue: str,
        snapshot: dict[str, Any],
        outcome: _Outcome,
        first: Optional[ReasoningReply],
    ) -> None:
        """The single closing update of the investigation row."""
        initial_response = first.content if first else None
        metadata = InvestigationMetadata(
            agent_metrics_snapshot=snapshot,
            initial_issue=issue,
            agent_results=outcome.agent_results,
            continuation_response=outcome.continuation,
            error=outcome.error,
            full_conversation=ConversationTranscript(
                initial_response=initial_response,
                agent_execution=outcome.agent_results,
                final_analysis=outcome.continuation,
            ),
        )

        async with self.session_factory() as session:
            result = await session.execute(
                select(Investigation).where(Investigation.investigation_id == investigation_id)
            )
            investigation = result.scalar_one()
            current = InvestigationStatus(investigation.status)
            if not current.can_advance_to(outcome.status):
                raise InternalError(
                    f"Illegal status change {current.value} -> {outcome.status.value}",
                    details=investigation_id,
                )

            investigation.status = outcome.status.value
            investigation.tensorzero_response = initial_response
            if investigation.episode_id is None and first is not None:
                investigation.episode_id = first.episode_id
            investigation.completed_at = _utcnow()
            investigation.meta = metadata.model_dump()
            await session.commit()
