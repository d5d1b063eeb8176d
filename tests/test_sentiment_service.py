"""Tests for batch satisfaction scoring."""

import json

import httpx
import pytest

from app.core.config import settings
from app.services.sentiment_service import (
    SentimentAnalysisError,
    SentimentRequest,
    analyze_batch,
)


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "SENTIMENT_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "SENTIMENT_BASE_URL", "https://llm.test/v1")


def _requests():
    return [
        SentimentRequest(workspace_id="ws", ticket_id="a", comments=["Thanks, works now!"]),
        SentimentRequest(workspace_id="ws", ticket_id="b", comments=["Third time asking."]),
    ]


def _completion(content: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    return handler


@pytest.mark.asyncio
async def test_scores_are_parsed_and_clamped(configured):
    seen = []

    def handler(request):
        seen.append(request)
        return _completion('{"a": 95, "b": -20, "zzz": 50}')(request)

    results = await analyze_batch(_requests(), transport=httpx.MockTransport(handler))

    assert {r.ticket_id: r.sentiment for r in results} == {"a": 95, "b": 0}
    assert seen[0].url.path == "/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["model"] == settings.SENTIMENT_MODEL
    assert "Third time asking." in body["messages"][1]["content"]


@pytest.mark.asyncio
async def test_code_fenced_answer_is_accepted(configured):
    content = '```json\n{"a": 70}\n```'

    results = await analyze_batch(_requests(), transport=httpx.MockTransport(_completion(content)))

    assert [(r.ticket_id, r.sentiment) for r in results] == [("a", 70)]


@pytest.mark.asyncio
async def test_invalid_json_answer_raises(configured):
    with pytest.raises(SentimentAnalysisError):
        await analyze_batch(_requests(), transport=httpx.MockTransport(_completion("I think they're happy")))


@pytest.mark.asyncio
async def test_http_error_raises(configured):
    def handler(request):
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(SentimentAnalysisError):
        await analyze_batch(_requests(), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_unconfigured_scorer_raises():
    with pytest.raises(SentimentAnalysisError):
        await analyze_batch(_requests())


@pytest.mark.asyncio
async def test_empty_batch_makes_no_call(configured):
    def handler(request):
        raise AssertionError("no request expected")

    assert await analyze_batch([], transport=httpx.MockTransport(handler)) == []
