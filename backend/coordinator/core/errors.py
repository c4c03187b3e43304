"""Error taxonomy for the coordinator.

Every error carries the HTTP status it maps to and renders as
``{"error": ..., "details": ...}`` through the handlers in ``coordinator.main``.
"""

from typing import Any, Optional


class CoordinatorError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Any = None,
    ):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(CoordinatorError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CoordinatorError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CoordinatorError):
    status_code = 404
    default_message = "Not found"


class NoMetrics(NotFound):
    default_message = "Agent metrics not found"


class BadRequest(CoordinatorError):
    status_code = 400
    default_message = "Invalid request"


class AgentUnavailable(CoordinatorError):
    status_code = 503
    default_message = "Agent not connected via WebSocket"


class UpstreamError(CoordinatorError):
    """The reasoning service was unreachable or returned nothing usable."""

    status_code = 500
    default_message = "Reasoning service error"


class AgentExecutionError(CoordinatorError):
    """The remote agent reported that it could not run the diagnostics."""

    status_code = 500
    default_message = "Agent investigation failed"


class WaitTimeout(CoordinatorError):
    status_code = 504
    default_message = "Timeout"

    def __init__(self, waited_for: str, budget: float, elapsed: float):
        self.waited_for = waited_for
        self.budget = budget
        self.elapsed = elapsed
        super().__init__(
            f"{waited_for} timed out after {budget:g} seconds",
            details={"budget_seconds": budget, "elapsed_seconds": round(elapsed, 3)},
        )


class InternalError(CoordinatorError):
    status_code = 500
    default_message = "Internal server error"
