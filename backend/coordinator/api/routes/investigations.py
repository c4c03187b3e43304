"""API routes for investigations: create-and-drive, list, details, inferences."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coordinator.api.deps import (
    get_analytics_client,
    get_background_waiter,
    get_orchestrator,
    get_settings,
)
from coordinator.config import AppConfig
from coordinator.core.errors import BadRequest
from coordinator.db import get_db
from coordinator.schemas.investigation import CreateInvestigationRequest, InvestigationResult
from coordinator.services import investigations as reads
from coordinator.services.agent_wait import CompletionWaiter
from coordinator.services.analytics import AnalyticsClient
from coordinator.services.auth import AuthenticatedUser, get_current_user
from coordinator.services.orchestrator import InvestigationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["investigations"])


@router.get("/", summary="List investigations, or fetch one by query parameter")
async def list_or_lookup(
    investigation_id: Optional[str] = Query(None),
    inference_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[str] = Query(None),
    agent_id: Optional[str] = Query(None),
    with_episodes: bool = Query(False),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsClient = Depends(get_analytics_client),
    config: AppConfig = Depends(get_settings),
):
    if investigation_id:
        return await reads.get_investigation_details(db, analytics, user, investigation_id)
    if inference_id:
        return await reads.get_inference_details(
            db, analytics, user, inference_id, check_ownership=config.INFERENCE_OWNERSHIP_CHECK
        )

    limit = min(limit or config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)
    return await reads.list_investigations(
        db,
        analytics,
        user,
        page=page,
        limit=limit,
        status=status,
        agent_id=agent_id,
        with_episodes=with_episodes,
    )


@router.get("/investigation/{investigation_id}", summary="Investigation details")
async def investigation_details(
    investigation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsClient = Depends(get_analytics_client),
):
    return await reads.get_investigation_details(db, analytics, user, investigation_id)


@router.get(
    "/investigation/{investigation_id}/wait",
    summary="Long-poll until the investigation reaches a terminal status",
)
async def wait_for_investigation(
    investigation_id: str,
    timeout: Optional[float] = Query(None, gt=0, description="Seconds, capped by the server budget"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    waiter: CompletionWaiter = Depends(get_background_waiter),
):
    await reads.get_owned_investigation(db, user, investigation_id)
    # release the connection before the long wait
    await db.close()

    budget = min(timeout, waiter.budget) if timeout else waiter.budget
    inv = await waiter.wait_for_investigation(investigation_id, budget=budget)
    return {"investigation": reads.investigation_to_dict(inv)}


@router.get("/inference/{inference_id}", summary="Inference details with feedback")
async def inference_details(
    inference_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    analytics: AnalyticsClient = Depends(get_analytics_client),
    config: AppConfig = Depends(get_settings),
):
    return await reads.get_inference_details(
        db, analytics, user, inference_id, check_ownership=config.INFERENCE_OWNERSHIP_CHECK
    )


@router.post(
    "/",
    response_model=InvestigationResult,
    summary="Create an investigation and drive it to a terminal status",
    description="Synchronous: the response is sent once the agent round trip "
    "and the follow-up analysis have finished or timed out.",
)
async def create_investigation(
    body: CreateInvestigationRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: InvestigationOrchestrator = Depends(get_orchestrator),
) -> InvestigationResult:
    if not body.agent_id or not body.issue:
        raise BadRequest("agent_id and issue are required")

    logger.info(f"User {user.id} requested investigation of agent {body.agent_id}")
    return await orchestrator.create_investigation(
        agent_id=body.agent_id,
        issue=body.issue,
        priority=body.priority,
        initiated_by=body.initiated_by,
    )
