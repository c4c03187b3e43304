"""Tests for the analytics store client."""

import base64
import json

import httpx
import pytest

from coordinator.config import AppConfig
from coordinator.services.analytics import (
    FEEDBACK_QUERY,
    FEEDBACK_TABLES,
    INFERENCE_FIELDS,
    AnalyticsClient,
    shape_inference_row,
)

INFERENCE_ROW = [
    "inf-1", "diagnose_and_heal_application", "default", "ep-1",
    '{"messages": []}', '[{"type": "text"}]', None, "{}", 812, 95, {}, "[]",
    "2026-01-01 10:00:00",
    "mi-1", "gpt-4o", "openai", 120, 300, 790, 90, "{}", "{}", "2026-01-01 10:00:00",
]


class Recorder:
    """Answers every request with a fresh copy of one canned response."""

    def __init__(self, status_code: int, **kwargs):
        self.status_code = status_code
        self.kwargs = kwargs
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, **self.kwargs)


def _client(handler) -> AnalyticsClient:
    config = AppConfig(
        ANALYTICS_URL="http://analytics.test:8123/",
        ANALYTICS_DATABASE="tensorzero",
        ANALYTICS_USER="reader",
        ANALYTICS_PASSWORD="pw",
    )
    return AnalyticsClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), config)


class TestShapeInferenceRow:
    def test_joined_row(self):
        shaped = shape_inference_row(INFERENCE_ROW)
        assert shaped["id"] == "inf-1"
        assert shaped["episode_id"] == "ep-1"
        assert shaped["timestamp"] == "2026-01-01 10:00:00"
        assert shaped["model_inference"]["id"] == "mi-1"
        assert shaped["model_inference"]["model_provider_name"] == "openai"
        assert shaped["model_inference"]["output_tokens"] == 300
        assert set(INFERENCE_FIELDS) < set(shaped)

    def test_missing_model_inference(self):
        row = INFERENCE_ROW[: len(INFERENCE_FIELDS)] + [None] * 10
        assert shape_inference_row(row)["model_inference"] is None


@pytest.mark.asyncio
class TestAnalyticsClient:
    async def test_episode_inferences_uses_parameters(self):
        rec = Recorder(200, json={
            "data": [
                ["inf-1", "diagnose_and_heal_application", "default", "2026-01-01 10:00:00", 800],
                ["inf-2", "diagnose_and_heal_application", "default", "2026-01-01 10:01:00", 650],
            ],
        })
        episode = "ep-1' OR 1=1 --"
        inferences = await _client(rec).episode_inferences(episode)

        assert [i["id"] for i in inferences] == ["inf-1", "inf-2"]
        assert inferences[0]["processing_time_ms"] == 800

        request = rec.requests[0]
        assert request.method == "POST"
        assert request.url.host == "analytics.test"
        assert request.url.params["database"] == "tensorzero"
        assert request.url.params["param_episode_id"] == episode
        sql = request.content.decode()
        assert "{episode_id:String}" in sql
        assert episode not in sql
        assert "FORMAT JSONCompact" in sql
        expected = base64.b64encode(b"reader:pw").decode()
        assert request.headers["authorization"] == f"Basic {expected}"

    async def test_inference_count(self):
        rec = Recorder(200, json={"data": [["a"], ["b"], ["c"]]})
        assert await _client(rec).inference_count("ep-1") == 3

    async def test_failure_yields_none_and_zero(self):
        rec = Recorder(500, text="Code: 60. Table does not exist")
        client = _client(rec)
        assert await client.episode_inferences("ep-1") is None
        assert await client.inference_count("ep-1") == 0
        assert await client.inference("inf-1") is None
        assert await client.feedback("inf-1") == []

    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert await _client(handler).episode_inferences("ep-1") is None

    async def test_inference_detail(self):
        rec = Recorder(200, json={"data": [INFERENCE_ROW]})
        inference = await _client(rec).inference("inf-1")
        assert inference["function_name"] == "diagnose_and_heal_application"
        assert inference["model_inference"]["model_name"] == "gpt-4o"
        assert rec.requests[0].url.params["param_inference_id"] == "inf-1"
        assert "LEFT JOIN ModelInference" in rec.requests[0].content.decode()

    async def test_inference_not_found(self):
        rec = Recorder(200, json={"data": []})
        assert await _client(rec).inference("missing") is None

    async def test_feedback_spans_all_tables(self):
        rec = Recorder(200, content=json.dumps({
            "data": [
                ["fb-1", "inf-1", "resolved", "true", "2026-01-01 10:05:00"],
                ["fb-2", "inf-1", "comment", "Helpful", "2026-01-01 10:06:00"],
            ],
        }).encode())
        feedback = await _client(rec).feedback("inf-1")

        assert feedback[0] == {
            "id": "fb-1",
            "target_id": "inf-1",
            "metric_name": "resolved",
            "value": "true",
            "timestamp": "2026-01-01 10:05:00",
        }
        assert feedback[1]["metric_name"] == "comment"
        sql = rec.requests[0].content.decode()
        for table in FEEDBACK_TABLES:
            assert table in sql
        assert sql.count("UNION ALL") == len(FEEDBACK_TABLES) - 1


def test_feedback_columns_per_table():
    selects = {
        part.split(" FROM ")[1].split()[0]: part
        for part in FEEDBACK_QUERY.split("UNION ALL")
    }
    assert set(selects) == set(FEEDBACK_TABLES)

    demonstration = selects["DemonstrationFeedback"]
    assert "WHERE inference_id = {inference_id:String}" in demonstration
    assert "inference_id AS target_id" in demonstration
    assert "'demonstration' AS metric_name" in demonstration

    comment = selects["CommentFeedback"]
    assert "WHERE target_id = {inference_id:String}" in comment
    assert "'comment' AS metric_name" in comment

    for table in ("CommentFeedback", "DemonstrationFeedback"):
        assert "SELECT id, metric_name" not in selects[table]
        assert ", metric_name," not in selects[table]
    for select in selects.values():
        assert "toString(value)" in select
