"""Customer-satisfaction scoring of ticket comment threads.

Scores come from an OpenAI-compatible chat completion. One call scores a
whole batch; the model answers with a JSON object of ticket id to score.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import httpx

from app.core.config import settings
from app.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

NEUTRAL_SATISFACTION = 100

SYSTEM_PROMPT = (
    "You rate customer satisfaction for support tickets. For each ticket you "
    "receive its comment thread. Reply with a JSON object mapping every "
    "ticket id to an integer from 0 (very unhappy) to 100 (very happy). "
    "Reply with JSON only."
)


class SentimentAnalysisError(Exception):
    """Scoring is unavailable or the scorer returned an unusable answer."""

    pass


@dataclass
class SentimentRequest:
    workspace_id: str
    ticket_id: str
    comments: list[str]


@dataclass
class SentimentResult:
    ticket_id: str
    sentiment: int


def _build_user_prompt(requests: list[SentimentRequest]) -> str:
    tickets = [
        {"ticketId": request.ticket_id, "comments": request.comments}
        for request in requests
    ]
    return json.dumps({"tickets": tickets})


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _parse_scores(content: str, requests: list[SentimentRequest]) -> list[SentimentResult]:
    try:
        payload = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as exc:
        raise SentimentAnalysisError("Scorer returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise SentimentAnalysisError("Scorer returned a non-object payload")

    results = []
    for request in requests:
        raw = payload.get(request.ticket_id)
        if raw is None:
            continue
        try:
            score = int(round(float(raw)))
        except (TypeError, ValueError):
            continue
        results.append(
            SentimentResult(ticket_id=request.ticket_id, sentiment=max(0, min(100, score)))
        )
    return results


async def analyze_batch(
    requests: list[SentimentRequest],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[SentimentResult]:
    """Score a batch of comment threads.

    Raises:
        SentimentAnalysisError: scoring not configured, HTTP failure, or an
            unparseable answer.
    """
    if not requests:
        return []
    if not settings.sentiment_enabled:
        raise SentimentAnalysisError("Sentiment scoring is not configured")

    body = {
        "model": settings.SENTIMENT_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": _build_user_prompt(requests)},
        ],
        "temperature": 0,
    }
    try:
        async with httpx.AsyncClient(
            base_url=settings.SENTIMENT_BASE_URL.rstrip("/"),
            timeout=settings.SENTIMENT_TIMEOUT_SECONDS,
            transport=transport,
        ) as client:
            response = await request_with_retries(
                lambda: client.post(
                    "/chat/completions",
                    headers={
                        "Authorization": f"Bearer {settings.SENTIMENT_API_KEY}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
            )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as exc:
        raise SentimentAnalysisError(f"Sentiment request failed: {exc}") from exc

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SentimentAnalysisError("Unexpected scorer response shape") from exc

    results = _parse_scores(content or "", requests)
    logger.debug("Scored %s of %s tickets", len(results), len(requests))
    return results
