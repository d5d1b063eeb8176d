"""Ticket provider abstraction.

A provider adapts one external issue tracker to a common shape: paged
ticket listing with an opaque continuation token, single-ticket lookup,
comment creation and issue creation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import UUID

import httpx

from app.core.config import settings
from app.db.models import Integration
from app.services.http_service import request_with_retries
from app.services.ticket_errors import ProviderTransientError

logger = logging.getLogger(__name__)


@dataclass
class ExternalComment:
    """A comment as reported by a tracker (or stored locally)."""

    id: str
    author: str
    content: str
    timestamp: datetime | None = None


@dataclass
class ExternalTicket:
    """Snapshot of a tracker issue. Never persisted as-is."""

    integration_id: UUID
    external_ticket_id: str
    title: str
    description: str
    status_name: str
    status_color: str
    priority_name: str
    priority_color: str
    priority_value: int
    external_url: str
    comments: list[ExternalComment] = field(default_factory=list)


@dataclass
class ProviderPage:
    tickets: list[ExternalTicket]
    is_last: bool
    next_token: str | None = None


# Issue listings are always read with this page size
LISTING_PAGE_SIZE = 100


@dataclass
class ListingPage:
    """One fixed-size page of a tracker's raw issue listing."""

    items: list[dict]
    has_next: bool


@dataclass
class CreatedIssue:
    """Result of creating an issue in a tracker."""

    issue_key: str
    issue_url: str
    issue_id: str


class TicketProvider(ABC):
    """Abstract base class for external ticket providers."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        # Tests inject httpx.MockTransport here
        self.transport = transport

    @abstractmethod
    async def fetch_tickets(
        self,
        integration: Integration,
        *,
        offset_hint: int = 0,
        max_results: int = 50,
        continuation_token: str | None = None,
    ) -> ProviderPage:
        """Fetch one page of tickets."""
        pass

    @abstractmethod
    async def get_ticket(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        """Fetch one ticket; None when the tracker does not know it."""
        pass

    @abstractmethod
    async def add_comment(
        self,
        integration: Integration,
        external_ticket_id: str,
        content: str,
        author: str,
    ) -> ExternalComment:
        """Post a comment to a ticket."""
        pass

    @abstractmethod
    async def create_issue(
        self,
        integration: Integration,
        summary: str,
        description: str,
        issue_type: str,
    ) -> CreatedIssue:
        """Create a new issue in the tracker."""
        pass

    def normalize_external_id(self, raw_id: str) -> str:
        """Canonical form of an external id as it appears in composite ids."""
        return raw_id.strip()

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _client(self, base_url: str, headers: dict[str, str]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    async def _send(
        self,
        request_fn: Callable[[], Awaitable[httpx.Response]],
        *,
        integration: Integration,
        action: str,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Run a request with retries and map failures to ProviderTransientError."""
        try:
            response = await request_with_retries(
                request_fn, max_attempts=settings.PROVIDER_MAX_ATTEMPTS
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "%s request failed for integration %s: %s",
                action,
                integration.id,
                exc,
            )
            raise ProviderTransientError(f"{action} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "%s returned HTTP %s for integration %s",
                action,
                response.status_code,
                integration.id,
            )
            raise ProviderTransientError(
                f"{action} failed with HTTP {response.status_code}"
            )
        return response

    def _json(
        self,
        response: httpx.Response,
        *,
        integration: Integration,
        action: str,
        expected: type = dict,
    ) -> Any:
        """Decode a tracker response body; unreadable bodies count as transient failures."""
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning(
                "%s returned an unreadable body for integration %s",
                action,
                integration.id,
            )
            raise ProviderTransientError(f"{action} returned an unreadable response") from exc
        if payload is None:
            payload = expected()
        if not isinstance(payload, expected):
            raise ProviderTransientError(f"{action} returned an unexpected response")
        return payload


def require_api_key(integration: Integration) -> str:
    if not integration.api_key:
        raise ProviderTransientError(
            f"Integration {integration.id} has no API key configured"
        )
    return integration.api_key


def parse_offset_token(token: str | None, default: int = 0) -> int:
    """Absolute listing offset carried by a continuation token."""
    if token and token.isdigit():
        return int(token)
    return max(default, 0)


async def read_listing_window(
    fetch_page: Callable[[int], Awaitable[ListingPage]],
    *,
    offset: int,
    max_results: int,
    keep: Callable[[dict], bool] = lambda item: True,
) -> tuple[list[dict], int, bool]:
    """Read up to ``max_results`` kept items starting at an absolute offset.

    Pages are 1-indexed and LISTING_PAGE_SIZE long, so an offset maps to
    the same items whatever window size earlier calls used. Items rejected
    by ``keep`` still advance the offset, and pages are followed until an
    item is kept or the listing ends.

    Returns the kept items, the offset just past the last consumed item
    and whether the listing is exhausted.
    """
    page_index, skip = divmod(offset, LISTING_PAGE_SIZE)
    kept: list[dict] = []
    while True:
        page = await fetch_page(page_index + 1)
        position = skip
        while position < len(page.items) and len(kept) < max_results:
            item = page.items[position]
            position += 1
            if keep(item):
                kept.append(item)
        offset = page_index * LISTING_PAGE_SIZE + position
        if position < len(page.items):
            return kept, offset, False
        if not page.has_next:
            return kept, offset, True
        if len(kept) >= max_results:
            return kept, offset, False
        page_index += 1
        skip = 0


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 timestamps from tracker payloads into aware datetimes."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Jira emits offsets without a colon (+0000)
    if len(text) >= 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Label-based priority (GitHub / GitLab)
# =============================================================================

_PRIORITY_LABEL_HINTS = ("priority", "urgent", "critical", "high", "medium", "low")


def priority_label(labels: list[str]) -> str:
    for label in labels:
        lowered = label.lower()
        if any(hint in lowered for hint in _PRIORITY_LABEL_HINTS):
            return label
    return "Medium"


def label_priority_value(name: str) -> int:
    lowered = name.lower()
    if "critical" in lowered or "urgent" in lowered:
        return 4
    if "high" in lowered:
        return 3
    if "low" in lowered:
        return 1
    return 2


def label_priority_color(name: str) -> str:
    lowered = name.lower()
    if "critical" in lowered or "urgent" in lowered:
        return "bg-red-100 text-red-800"
    if "high" in lowered:
        return "bg-orange-100 text-orange-800"
    if "low" in lowered:
        return "bg-green-100 text-green-800"
    return "bg-yellow-100 text-yellow-800"


def issue_state_color(state: str) -> str:
    lowered = (state or "").lower()
    if lowered in ("open", "opened"):
        return "bg-blue-100 text-blue-800"
    if lowered == "closed":
        return "bg-red-100 text-red-800"
    return "bg-gray-100 text-gray-800"
