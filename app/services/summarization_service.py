"""On-demand ticket summaries.

Summaries come from the same OpenAI-compatible chat completions endpoint
used for satisfaction scoring. They are generated per request and never
stored.
"""

from __future__ import annotations

import logging

import httpx

from app.core.config import settings
from app.schemas.ticketing import TicketRead
from app.services.http_service import request_with_retries
from app.services.ticket_errors import SummarizationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You summarize support tickets. Write a single paragraph that covers the "
    "important facts about the ticket and any decisions that were made. Be "
    "complete but compact."
)


def build_ticket_content(ticket: TicketRead) -> str:
    """Plain-text rendering of a ticket for the summarizer."""
    lines = [f"Title: {ticket.title}", "", "Description:", ticket.description or "", ""]
    if ticket.comments:
        lines.append("Comments:")
        lines.extend(f"- {comment.author}: {comment.content}" for comment in ticket.comments)
    return "\n".join(lines)


async def generate_summary(
    content: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Summarize ticket content.

    Raises:
        SummarizationError: summaries not configured, HTTP failure, or an
            empty answer.
    """
    if not settings.sentiment_enabled:
        raise SummarizationError("Ticket summarization is not configured")

    body = {
        "model": settings.summary_model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ],
        "temperature": 0.3,
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
        logger.warning("Summary request failed: %s", type(exc).__name__)
        raise SummarizationError(f"Summary request failed: {exc}") from exc
    except ValueError as exc:
        raise SummarizationError("Summarizer returned an unreadable response") from exc

    try:
        summary = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SummarizationError("Unexpected summarizer response shape") from exc
    if not isinstance(summary, str) or not summary.strip():
        raise SummarizationError("Summarizer returned an empty summary")
    return summary.strip()
