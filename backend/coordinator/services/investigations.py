"""Read side: list investigations, investigation details, inference details.

Investigations are only ever reached through the agents a user owns; there is
no query by user id on the investigations table itself.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coordinator.core.errors import Forbidden, NotFound
from coordinator.db.models import Agent, Investigation
from coordinator.schemas.investigation import Pagination
from coordinator.services.analytics import AnalyticsClient
from coordinator.services.auth import AuthenticatedUser

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _agent_summary(agent: Optional[Agent]) -> Optional[dict]:
    if agent is None:
        return None
    return {"id": agent.id, "name": agent.name, "status": agent.status}


def investigation_to_dict(inv: Investigation) -> dict:
    return {
        "id": inv.id,
        "investigation_id": inv.investigation_id,
        "agent_id": inv.agent_id,
        "issue": inv.issue,
        "priority": inv.priority,
        "status": inv.status,
        "episode_id": inv.episode_id,
        "tensorzero_response": inv.tensorzero_response,
        "initiated_by": inv.initiated_by,
        "metadata": inv.meta,
        "initiated_at": _iso(inv.initiated_at),
        "completed_at": _iso(inv.completed_at),
        "created_at": _iso(inv.created_at),
        "updated_at": _iso(inv.updated_at),
    }


async def _owned_agent_ids(db: AsyncSession, user: AuthenticatedUser) -> list[str]:
    result = await db.execute(select(Agent.id).where(Agent.owner == user.id))
    return list(result.scalars().all())


async def list_investigations(
    db: AsyncSession,
    analytics: AnalyticsClient,
    user: AuthenticatedUser,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    agent_id: Optional[str] = None,
    with_episodes: bool = False,
) -> dict:
    filters = {
        "status": status or "all",
        "agent_id": agent_id or "all",
        "with_episodes": with_episodes,
    }
    agent_ids = await _owned_agent_ids(db, user)
    if agent_id:
        # Filtering on someone else's agent matches nothing.
        agent_ids = [a for a in agent_ids if a == agent_id]

    if not agent_ids:
        return {
            "investigations": [],
            "pagination": Pagination.build(page, limit, 0).model_dump(),
            "filters": filters,
        }

    conditions = [Investigation.agent_id.in_(agent_ids)]
    if status:
        conditions.append(Investigation.status == status)
    if with_episodes:
        conditions.append(Investigation.episode_id.is_not(None))

    total = (
        await db.execute(select(func.count(Investigation.id)).where(*conditions))
    ).scalar_one()

    stmt = (
        select(Investigation)
        .where(*conditions)
        .order_by(Investigation.created_at.desc(), Investigation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = (await db.execute(stmt)).scalars().all()

    async def _count(inv: Investigation) -> int:
        return await analytics.inference_count(inv.episode_id) if inv.episode_id else 0

    counts = await asyncio.gather(*(_count(inv) for inv in rows))

    investigations = []
    for inv, count in zip(rows, counts):
        investigations.append({
            "id": inv.id,
            "investigation_id": inv.investigation_id,
            "issue": inv.issue,
            "priority": inv.priority,
            "status": inv.status,
            "episode_id": inv.episode_id,
            "inference_count": count,
            "initiated_by": inv.initiated_by,
            "initiated_at": _iso(inv.initiated_at),
            "completed_at": _iso(inv.completed_at),
            "created_at": _iso(inv.created_at),
            "updated_at": _iso(inv.updated_at),
            "agent": _agent_summary(inv.agent),
        })

    return {
        "investigations": investigations,
        "pagination": Pagination.build(page, limit, total).model_dump(),
        "filters": filters,
    }


async def get_owned_investigation(
    db: AsyncSession, user: AuthenticatedUser, investigation_id: str
) -> Investigation:
    """Load an investigation the caller may see.

    Raises:
        NotFound: no such investigation
        Forbidden: the investigation's agent belongs to someone else
    """
    result = await db.execute(
        select(Investigation).where(Investigation.investigation_id == investigation_id)
    )
    inv = result.scalar_one_or_none()
    if inv is None:
        logger.info(f"Investigation not found: {investigation_id}")
        raise NotFound("Investigation not found")
    if inv.agent is None or inv.agent.owner != user.id:
        raise Forbidden("Unauthorized to access this investigation")
    return inv


async def get_investigation_details(
    db: AsyncSession,
    analytics: AnalyticsClient,
    user: AuthenticatedUser,
    investigation_id: str,
) -> dict:
    inv = await get_owned_investigation(db, user, investigation_id)

    inferences = None
    if inv.episode_id:
        inferences = await analytics.episode_inferences(inv.episode_id)

    body = investigation_to_dict(inv)
    body["agent"] = {
        **_agent_summary(inv.agent),
        "owner": inv.agent.owner,
        "websocket_connected": inv.agent.websocket_connected,
    }
    body["inferences"] = inferences
    body["inference_count"] = len(inferences) if inferences else 0
    return {"investigation": body}


async def get_inference_details(
    db: AsyncSession,
    analytics: AnalyticsClient,
    user: AuthenticatedUser,
    inference_id: str,
    check_ownership: bool = True,
) -> dict:
    inference = await analytics.inference(inference_id)
    if inference is None:
        raise NotFound("Inference not found")

    if check_ownership:
        episode_id = inference.get("episode_id")
        owned = None
        if episode_id:
            result = await db.execute(
                select(Investigation.id)
                .join(Agent, Agent.id == Investigation.agent_id)
                .where(Investigation.episode_id == episode_id, Agent.owner == user.id)
                .limit(1)
            )
            owned = result.scalar_one_or_none()
        if owned is None:
            raise Forbidden("Unauthorized to access this inference")

    feedback = await analytics.feedback(inference_id)
    return {"inference": inference, "feedback": feedback}
