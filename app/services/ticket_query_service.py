"""Hybrid ticket listing and lookup.

A page is served in one of two phases. The internal phase pages through
the workspace's own tickets; when they run out mid-page the remainder is
filled from the tracker integrations and the cursor switches to the
external phase, which then pages through the trackers only.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import TicketPhase
from app.db.models import Integration, Ticket, TicketPriority
from app.schemas.ticketing import (
    PaginatedTicketsResponse,
    TicketPriorityRead,
    TicketRead,
    TicketStatusRead,
)
from app.services import (
    external_fetch_service,
    integration_service,
    materialization_service,
    sentiment_service,
    summarization_service,
    workspace_access,
)
from app.services.ticket_errors import (
    IntegrationNotFoundError,
    ProviderTransientError,
    SummarizationError,
    TicketNotFoundError,
)
from app.services.ticket_identity import parse_ticket_id
from app.services.ticket_pagination import (
    ExternalPaginationState,
    PaginationState,
    decode_page_token,
    normalize_page_size,
    next_page_token,
)
from app.services.ticket_providers import ExternalTicket, get_ticket_provider

logger = logging.getLogger(__name__)


# =============================================================================
# Views
# =============================================================================

def internal_ticket_view(ticket: Ticket) -> TicketRead:
    """Unified view of a pure internal ticket."""
    status = None
    if ticket.status is not None:
        status = TicketStatusRead(
            id=ticket.status.id, name=ticket.status.name, color=ticket.status.color
        )
    priority = None
    if ticket.priority is not None:
        priority = TicketPriorityRead(
            id=ticket.priority.id,
            name=ticket.priority.name,
            color=ticket.priority.color,
            value=ticket.priority.value,
        )
    return TicketRead(
        id=str(ticket.id),
        workspace_id=ticket.workspace_id,
        title=ticket.title,
        description=ticket.description or "",
        status=status,
        priority=priority,
        internal=True,
        source=materialization_service.source_label(None),
        assigned_agent_id=ticket.assigned_agent_id,
        assigned_workflow_id=ticket.assigned_workflow_id,
        comments=materialization_service.merge_comments([], ticket),
    )


def dedupe_tickets(items: list[TicketRead]) -> list[TicketRead]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


async def attach_satisfaction(items: list[TicketRead]) -> None:
    """Fill in satisfaction scores (0-100) in place.

    Internal tickets and tickets without comment text score 100. The rest
    are scored in one batch; any scoring failure leaves them at 100.
    """
    pending: list[tuple[TicketRead, list[str]]] = []
    for item in items:
        comments = [c.content for c in item.comments if c.content and c.content.strip()]
        if item.internal or not comments:
            item.satisfaction = sentiment_service.NEUTRAL_SATISFACTION
            continue
        pending.append((item, comments))

    if not pending:
        return

    scores: dict[str, int] = {}
    if settings.sentiment_enabled:
        requests = [
            sentiment_service.SentimentRequest(
                workspace_id=str(item.workspace_id),
                ticket_id=item.id,
                comments=comments,
            )
            for item, comments in pending
        ]
        try:
            results = await sentiment_service.analyze_batch(requests)
            scores = {result.ticket_id: result.sentiment for result in results}
        except Exception:
            logger.exception("Sentiment scoring failed for %s tickets", len(requests))

    for item, _ in pending:
        item.satisfaction = scores.get(item.id, sentiment_service.NEUTRAL_SATISFACTION)


# =============================================================================
# Listing
# =============================================================================

def _internal_page(db: Session, *, workspace_id: UUID, offset: int, limit: int) -> list[Ticket]:
    query = (
        select(Ticket)
        .outerjoin(TicketPriority, Ticket.priority_id == TicketPriority.id)
        .where(
            Ticket.workspace_id == workspace_id,
            Ticket.integration_id.is_(None),
            Ticket.external_ticket_id.is_(None),
        )
        .options(
            selectinload(Ticket.status),
            selectinload(Ticket.priority),
            selectinload(Ticket.comments),
        )
        .order_by(
            TicketPriority.value.desc().nulls_last(),
            func.coalesce(Ticket.updated_at, Ticket.created_at).desc(),
            Ticket.id,
        )
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(query).scalars())


async def _fetch_external(
    db: Session,
    integrations: list[Integration],
    slots: int,
    state: ExternalPaginationState,
) -> tuple[list[TicketRead], external_fetch_service.ExternalFetchResult]:
    result = await external_fetch_service.fetch_external_tickets(integrations, slots, state)
    by_id = {integration.id: integration for integration in integrations}
    views = materialization_service.resolve_external_tickets(db, result.tickets, by_id)
    return views, result


async def list_tickets(
    db: Session,
    *,
    workspace_id: UUID,
    user_id: UUID,
    page_token: str | None = None,
    page_size: int | None = None,
) -> PaginatedTicketsResponse:
    """One page of the workspace's internal and external tickets."""
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=workspace_id)

    size = normalize_page_size(page_size)
    state = decode_page_token(page_token)
    integrations = integration_service.list_active_tracker_integrations(
        db, workspace_id=workspace_id
    )

    items: list[TicketRead] = []
    next_state: PaginationState | None = None

    if state.phase == TicketPhase.INTERNAL:
        rows = _internal_page(
            db, workspace_id=workspace_id, offset=state.internal_offset, limit=size
        )
        items = [internal_ticket_view(row) for row in rows]
        if len(rows) == size:
            next_state = PaginationState(
                phase=TicketPhase.INTERNAL,
                internal_offset=state.internal_offset + size,
            )
        elif integrations:
            external_items, result = await _fetch_external(
                db, integrations, size - len(rows), ExternalPaginationState()
            )
            items.extend(external_items)
            if result.has_more:
                next_state = PaginationState(
                    phase=TicketPhase.EXTERNAL,
                    internal_offset=state.internal_offset + len(rows),
                    external_state=result.state,
                )
    elif integrations:
        external_items, result = await _fetch_external(
            db, integrations, size, state.external_state or ExternalPaginationState()
        )
        items = external_items
        if result.has_more:
            next_state = PaginationState(
                phase=TicketPhase.EXTERNAL,
                internal_offset=state.internal_offset,
                external_state=result.state,
            )

    items = dedupe_tickets(items)
    await attach_satisfaction(items)

    is_last = next_state is None
    logger.debug(
        "Ticket page served: phase=%s items=%s is_last=%s",
        state.phase.value,
        len(items),
        is_last,
        extra=build_log_context(user_id=str(user_id), workspace_id=str(workspace_id)),
    )
    return PaginatedTicketsResponse(
        items=items,
        next_page_token=None if next_state is None else next_page_token(next_state, is_last=False),
        is_last=is_last,
        total_count=len(items),
    )


# =============================================================================
# Single ticket
# =============================================================================

async def get_external_snapshot(
    integration: Integration, external_ticket_id: str
) -> ExternalTicket:
    """Current tracker data for one ticket; NotFound when unavailable."""
    provider = get_ticket_provider(integration.provider)
    if provider is None:
        raise TicketNotFoundError(
            f"Provider {integration.provider} is not supported for ticket lookups"
        )
    try:
        external = await provider.get_ticket(integration, external_ticket_id)
    except ProviderTransientError as exc:
        logger.warning(
            "Tracker lookup failed for ticket %s: %s",
            external_ticket_id,
            exc,
            extra=build_log_context(integration_id=str(integration.id)),
        )
        raise TicketNotFoundError(
            f"External ticket {external_ticket_id} could not be retrieved"
        ) from exc
    if external is None:
        raise TicketNotFoundError(f"External ticket {external_ticket_id} not found")
    return external


async def _get_external_ticket(
    db: Session, *, integration_id: UUID, external_ticket_id: str, user_id: UUID
) -> TicketRead:
    integration = integration_service.get_integration(db, integration_id)
    if integration is None:
        raise IntegrationNotFoundError(f"Integration {integration_id} not found")
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=integration.workspace_id)

    provider = get_ticket_provider(integration.provider)
    if provider is not None:
        external_ticket_id = provider.normalize_external_id(external_ticket_id)
    external = await get_external_snapshot(integration, external_ticket_id)
    override = materialization_service.find_override(
        db, integration.id, external.external_ticket_id
    )
    view = materialization_service.resolve_external_ticket(external, integration, override)
    await attach_satisfaction([view])
    return view


async def get_ticket_by_id(db: Session, *, ticket_id: str, user_id: UUID) -> TicketRead:
    """Look up a ticket by GUID or composite id."""
    parsed = parse_ticket_id(ticket_id)
    if not parsed.is_internal:
        return await _get_external_ticket(
            db,
            integration_id=parsed.integration_id,
            external_ticket_id=parsed.external_ticket_id,
            user_id=user_id,
        )

    ticket = db.get(Ticket, parsed.internal_id)
    if ticket is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=ticket.workspace_id)

    if ticket.integration_id is not None and ticket.external_ticket_id is not None:
        return await _get_external_ticket(
            db,
            integration_id=ticket.integration_id,
            external_ticket_id=ticket.external_ticket_id,
            user_id=user_id,
        )

    view = internal_ticket_view(ticket)
    await attach_satisfaction([view])
    return view


async def summarize_ticket(db: Session, *, ticket_id: str, user_id: UUID) -> TicketRead:
    """The ticket view with a freshly generated summary; nothing is persisted."""
    view = await get_ticket_by_id(db, ticket_id=ticket_id, user_id=user_id)
    try:
        summary = await summarization_service.generate_summary(
            summarization_service.build_ticket_content(view)
        )
    except SummarizationError:
        logger.exception(
            "Failed to generate summary for ticket %s",
            ticket_id,
            extra=build_log_context(user_id=str(user_id), workspace_id=str(view.workspace_id)),
        )
        raise
    return view.model_copy(update={"summary": summary})
