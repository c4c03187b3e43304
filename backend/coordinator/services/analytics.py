"""Analytics store client (ClickHouse HTTP interface).

Read-only lookups of the inference and feedback tables written by the
reasoning gateway. Queries are sent with server-side parameters and
``FORMAT JSONCompact``; every row comes back as a positional list which is
shaped into a dict here.
"""

import logging
from typing import Any, Optional

import httpx

from coordinator.config import AppConfig

logger = logging.getLogger(__name__)


EPISODE_INFERENCES_QUERY = """
SELECT
  id,
  function_name,
  variant_name,
  timestamp,
  processing_time_ms
FROM ChatInference
WHERE episode_id = {episode_id:String}
ORDER BY timestamp ASC
FORMAT JSONCompact
"""

INFERENCE_DETAIL_QUERY = """
SELECT
  ci.id,
  ci.function_name,
  ci.variant_name,
  ci.episode_id,
  ci.input,
  ci.output,
  ci.tool_params,
  ci.inference_params,
  ci.processing_time_ms,
  ci.ttft_ms,
  ci.tags,
  ci.extra_body,
  ci.timestamp,
  mi.id AS model_inference_id,
  mi.model_name,
  mi.model_provider_name,
  mi.input_tokens,
  mi.output_tokens,
  mi.response_time_ms,
  mi.ttft_ms AS model_ttft_ms,
  mi.raw_request,
  mi.raw_response,
  mi.timestamp AS model_timestamp
FROM ChatInference ci
LEFT JOIN ModelInference mi ON ci.id = mi.inference_id
WHERE ci.id = {inference_id:String}
FORMAT JSONCompact
"""

# table -> (target column, metric name expression). Comment and demonstration
# rows carry no metric_name; demonstrations point at their inference through
# inference_id. Values are stringified so the UNION branches share one type.
FEEDBACK_SOURCES = {
    "BooleanMetricFeedback": ("target_id", "metric_name"),
    "FloatMetricFeedback": ("target_id", "metric_name"),
    "CommentFeedback": ("target_id", "'comment' AS metric_name"),
    "DemonstrationFeedback": ("inference_id", "'demonstration' AS metric_name"),
}
FEEDBACK_TABLES = tuple(FEEDBACK_SOURCES)


def _feedback_select(table: str, target: str, metric: str) -> str:
    target_col = target if target == "target_id" else f"{target} AS target_id"
    return (
        f"SELECT id, {target_col}, {metric}, toString(value) AS feedback_value, timestamp "
        f"FROM {table} WHERE {target} = {{inference_id:String}}"
    )


FEEDBACK_QUERY = (
    "\nUNION ALL\n".join(
        _feedback_select(table, target, metric)
        for table, (target, metric) in FEEDBACK_SOURCES.items()
    )
    + "\nFORMAT JSONCompact\n"
)

SUMMARY_FIELDS = ("id", "function_name", "variant_name", "timestamp", "processing_time_ms")

INFERENCE_FIELDS = (
    "id",
    "function_name",
    "variant_name",
    "episode_id",
    "input",
    "output",
    "tool_params",
    "inference_params",
    "processing_time_ms",
    "ttft_ms",
    "tags",
    "extra_body",
    "timestamp",
)

MODEL_INFERENCE_FIELDS = (
    "id",
    "model_name",
    "model_provider_name",
    "input_tokens",
    "output_tokens",
    "response_time_ms",
    "ttft_ms",
    "raw_request",
    "raw_response",
    "timestamp",
)

FEEDBACK_FIELDS = ("id", "target_id", "metric_name", "value", "timestamp")


def _zip_row(fields: tuple[str, ...], row: list) -> dict:
    return {name: (row[i] if i < len(row) else None) for i, name in enumerate(fields)}


def shape_inference_row(row: list) -> dict:
    """Turn the joined inference row into a flat object with a nested model_inference."""
    inference = _zip_row(INFERENCE_FIELDS, row)
    model_row = row[len(INFERENCE_FIELDS):]
    inference["model_inference"] = (
        _zip_row(MODEL_INFERENCE_FIELDS, model_row) if model_row and model_row[0] else None
    )
    return inference


class AnalyticsClient:
    """Runs parameterised read queries against the analytics store."""

    def __init__(self, http: httpx.AsyncClient, config: AppConfig):
        self._http = http
        self.base_url = config.ANALYTICS_URL.rstrip("/")
        self.database = config.ANALYTICS_DATABASE
        self.user = config.ANALYTICS_USER
        self.password = config.ANALYTICS_PASSWORD
        self.timeout = config.ANALYTICS_TIMEOUT_SECONDS

    async def query(self, sql: str, **params: str) -> Optional[list[list]]:
        """Execute a JSONCompact query. Returns the data rows, or None on failure."""
        query_params = {"database": self.database}
        query_params.update({f"param_{k}": v for k, v in params.items()})
        try:
            resp = await self._http.post(
                f"{self.base_url}/",
                params=query_params,
                content=sql.encode("utf-8"),
                auth=(self.user, self.password),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Analytics store unreachable ({self.base_url}): {e}")
            return None

        if resp.status_code >= 400:
            logger.error(f"Analytics query error: {resp.status_code} {resp.text[:300]}")
            return None

        try:
            return resp.json().get("data") or []
        except ValueError:
            logger.error("Analytics store returned a non-JSON body")
            return None

    async def episode_inferences(self, episode_id: str) -> Optional[list[dict]]:
        """Ordered inference summaries (ids and metadata only) for one episode."""
        rows = await self.query(EPISODE_INFERENCES_QUERY, episode_id=episode_id)
        if rows is None:
            return None
        return [_zip_row(SUMMARY_FIELDS, row) for row in rows]

    async def inference_count(self, episode_id: str) -> int:
        inferences = await self.episode_inferences(episode_id)
        return len(inferences) if inferences else 0

    async def inference(self, inference_id: str) -> Optional[dict[str, Any]]:
        rows = await self.query(INFERENCE_DETAIL_QUERY, inference_id=inference_id)
        if not rows:
            return None
        return shape_inference_row(rows[0])

    async def feedback(self, inference_id: str) -> list[dict]:
        """Boolean, float, comment and demonstration feedback targeting one inference."""
        rows = await self.query(FEEDBACK_QUERY, inference_id=inference_id)
        return [_zip_row(FEEDBACK_FIELDS, row) for row in rows or []]
