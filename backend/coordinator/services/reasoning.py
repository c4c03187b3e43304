"""AI reasoning service client and reply classification.

The reasoning gateway exposes an OpenAI-compatible chat completions endpoint.
Every call targets one gateway function; the gateway groups the turns of an
investigation under an ``episode_id`` which it returns with each reply.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

from coordinator.config import AppConfig
from coordinator.core.errors import UpstreamError

logger = logging.getLogger(__name__)

DIAGNOSTIC_MARKER = "diagnostic"

RESULTS_FOLLOW_UP = (
    "Command execution results: {results}\n\n"
    "Please analyze these results and provide recommendations or next steps."
)


@dataclass
class ReasoningReply:
    content: str
    episode_id: str | None = None
    inference_id: str | None = None
    latency_ms: int = 0
    raw: dict = field(default_factory=dict, repr=False)


class ReasoningClient:
    """Calls the reasoning gateway's chat completions endpoint."""

    def __init__(self, http: httpx.AsyncClient, config: AppConfig):
        self._http = http
        self.url = config.reasoning_chat_url
        self.model = config.reasoning_model
        self.api_key = config.REASONING_API_KEY
        self.timeout = config.REASONING_TIMEOUT_SECONDS

    def _headers(self) -> dict:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    async def chat(self, messages: list[dict]) -> ReasoningReply:
        """Send one conversation and return the first choice.

        Raises:
            UpstreamError: transport failure, non-2xx status, or no choices
        """
        payload = {"model": self.model, "messages": messages}

        start = time.monotonic()
        try:
            resp = await self._http.post(
                self.url, json=payload, headers=self._headers(), timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(f"Cannot reach reasoning service ({self.url}): {e}")
            raise UpstreamError("Reasoning service unreachable", details=str(e)) from e

        if resp.status_code >= 400:
            logger.error(f"Reasoning service HTTP error: {resp.status_code} {resp.text[:200]}")
            raise UpstreamError(
                f"Reasoning service error: {resp.status_code}", details=resp.text[:500]
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("Reasoning service returned invalid JSON", details=str(e)) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise UpstreamError("No response from reasoning service")

        message = choices[0].get("message")
        content = (message.get("content") if isinstance(message, dict) else None) or ""
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Reasoning {self.model}: {latency_ms}ms, "
            f"{len(messages)} messages, episode={data.get('episode_id')}"
        )
        return ReasoningReply(
            content=content,
            episode_id=data.get("episode_id"),
            inference_id=data.get("id"),
            latency_ms=latency_ms,
            raw=data,
        )


def results_follow_up(
    initial_messages: list[dict], first_reply: str, command_results: Any
) -> list[dict]:
    """Build the second-turn conversation from the agent's command results."""
    return [
        *initial_messages,
        {"role": "assistant", "content": first_reply},
        {
            "role": "user",
            "content": RESULTS_FOLLOW_UP.format(results=json.dumps(command_results)),
        },
    ]


# ── Reply classification ──────────────────────────────────────────────


@dataclass(frozen=True)
class PlainAnswer:
    """A direct answer; no agent round trip is needed."""

    text: str


@dataclass(frozen=True)
class DiagnosticRequest:
    """Commands or programs the agent must run before analysis continues."""

    payload: dict


@dataclass(frozen=True)
class Unparseable:
    """Text that claims to be JSON but does not decode."""

    text: str
    error: str


ParsedReply = Union[PlainAnswer, DiagnosticRequest, Unparseable]

_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)


def _strip_fence(text: str) -> tuple[str, bool]:
    m = _FENCE.match(text)
    if m:
        return m.group(1).strip(), True
    return text, False


def parse_reply(content: str) -> ParsedReply:
    text = (content or "").strip()
    body, fenced = _strip_fence(text)
    looks_like_json = fenced or body[:1] in ("{", "[")

    try:
        decoded = json.loads(body)
    except ValueError as e:
        if looks_like_json:
            return Unparseable(text=content, error=str(e))
        return PlainAnswer(text=content)

    if isinstance(decoded, dict) and decoded.get("response_type") == DIAGNOSTIC_MARKER:
        return DiagnosticRequest(payload=decoded)
    return PlainAnswer(text=content)
