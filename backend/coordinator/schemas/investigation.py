"""Pydantic models for investigation requests, stored metadata and results."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from coordinator.db.models import Priority

COMMUNICATION_METHOD = "websocket"


class CreateInvestigationRequest(BaseModel):
    """Body of POST /. Presence of agent_id/issue is checked by the route so a
    missing field yields the documented 400 rather than a validation error."""

    agent_id: Optional[str] = Field(None, description="Agent to investigate")
    issue: Optional[str] = Field(None, description="Free-text problem description")
    priority: Priority = Priority.MEDIUM
    initiated_by: Optional[str] = None


class ConversationTranscript(BaseModel):
    initial_response: Optional[str] = None
    agent_execution: Any = None
    final_analysis: Optional[str] = None


class SagaError(BaseModel):
    type: str
    message: str


class InvestigationMetadata(BaseModel):
    """Everything the orchestrator records in the investigation's metadata column."""

    agent_metrics_snapshot: dict[str, Any]
    initial_issue: str
    communication_method: str = COMMUNICATION_METHOD
    agent_results: Any = None
    continuation_response: Optional[str] = None
    error: Optional[SagaError] = None
    full_conversation: Optional[ConversationTranscript] = None


class InvestigationResult(BaseModel):
    """Envelope returned by POST / once the saga reaches a terminal status."""

    success: bool = True
    investigation_id: str
    agent_id: str
    status: str
    communication_method: str = COMMUNICATION_METHOD
    agent_connected: bool = True
    initial_response: str
    diagnostic_response: Optional[dict[str, Any]] = None
    agent_execution_results: Any = None
    continuation_response: Optional[str] = None
    episode_id: Optional[str] = None
    message: str
    full_flow_completed: bool = False
    error: Optional[SagaError] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = -(-total // limit) if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
