"""Polling waits on rows written by other processes.

The remote agent reports back by updating its pending-investigation row, and a
finished saga shows up as a terminal status on the investigation row. Both are
observed the same way: read the row, sleep a fixed interval, give up once the
wall-clock budget is spent. The budget check runs after a read, so a wait
never ends in a timeout before the full budget has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coordinator.core.errors import AgentExecutionError, InternalError, WaitTimeout
from coordinator.db.models import (
    Investigation,
    InvestigationStatus,
    PendingInvestigation,
    PendingStatus,
)

logger = logging.getLogger(__name__)

# (done, value): done=True stops the wait and returns value
Probe = Callable[[AsyncSession], Awaitable[tuple[bool, Any]]]


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class CompletionWaiter:
    """Fixed-interval poller with a hard wall-clock budget.

    Args:
        session_factory: opens a fresh session for every read
        poll_interval: seconds between reads
        budget: total seconds before giving up with WaitTimeout
        retry_transient: keep polling through transient database errors
        clock / sleep: injectable for tests
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float,
        budget: float,
        retry_transient: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.poll_interval = poll_interval
        self.budget = budget
        self.retry_transient = retry_transient
        self._clock = clock
        self._sleep = sleep

    async def _poll(self, probe: Probe, label: str, budget: Optional[float] = None) -> Any:
        budget = self.budget if budget is None else budget
        start = self._clock()
        attempts = 0
        while True:
            attempts += 1
            try:
                async with self.session_factory() as session:
                    done, value = await probe(session)
                if done:
                    logger.debug(f"{label} settled after {attempts} reads")
                    return value
            except Exception as e:
                if not (self.retry_transient and _is_transient(e)):
                    raise
                logger.warning(f"Transient error while polling {label} (read {attempts}): {e}")

            elapsed = self._clock() - start
            if elapsed >= budget:
                raise WaitTimeout(label, budget, elapsed)
            await self._sleep(min(self.poll_interval, budget - elapsed))

    async def wait_for_pending(
        self, pending_id: str, budget: Optional[float] = None
    ) -> PendingInvestigation:
        """Wait until the agent marks the pending investigation completed.

        Raises:
            AgentExecutionError: the agent marked the row failed
            InternalError: the row disappeared
            WaitTimeout: the budget ran out while the row was still pending
        """

        async def probe(session: AsyncSession) -> tuple[bool, Any]:
            pending = await session.get(PendingInvestigation, pending_id)
            if pending is None:
                raise InternalError("Pending investigation not found", details=pending_id)
            if pending.status == PendingStatus.COMPLETED.value:
                return True, pending
            if pending.status == PendingStatus.FAILED.value:
                raise AgentExecutionError(
                    f"Agent investigation failed: {pending.error_message}",
                    details=pending.error_message,
                )
            return False, None

        logger.info(f"Waiting for agent to complete pending investigation {pending_id}")
        return await self._poll(probe, f"Pending investigation {pending_id}", budget)

    async def wait_for_investigation(
        self, investigation_id: str, budget: Optional[float] = None
    ) -> Investigation:
        """Wait until the investigation reaches a terminal status."""

        async def probe(session: AsyncSession) -> tuple[bool, Any]:
            result = await session.execute(
                select(Investigation).where(Investigation.investigation_id == investigation_id)
            )
            inv = result.scalar_one_or_none()
            if inv is None:
                raise InternalError("Investigation not found", details=investigation_id)
            return InvestigationStatus(inv.status).is_terminal, inv

        return await self._poll(probe, f"Investigation {investigation_id}", budget)
