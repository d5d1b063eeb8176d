"""Local overlays for external tickets.

An external ticket becomes a local row ("materialized") the first time it
is assigned to an agent or workflow. From then on the row's status,
priority and assignments override what the tracker reports, and locally
stored comments are merged with the tracker's thread.
"""

from __future__ import annotations

import logging
from datetime import timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import Integration, Ticket
from app.schemas.ticketing import (
    CommentRead,
    TicketPriorityRead,
    TicketRead,
    TicketStatusRead,
)
from app.services import ticket_catalog_service
from app.services.ticket_identity import build_composite_id
from app.services.ticket_providers import ExternalComment, ExternalTicket

logger = logging.getLogger(__name__)


def source_label(provider: str | None) -> str:
    """Display label for a ticket's origin, e.g. "JIRA" or "AZURE-DEVOPS"."""
    if not provider:
        return "INTERNAL"
    return provider.upper().replace("_", "-")


def can_delete(ticket: Ticket) -> bool:
    """Tickets backed by an external tracker are never deleted locally."""
    return ticket.integration_id is None


# =============================================================================
# Override lookup
# =============================================================================

def find_override(db: Session, integration_id: UUID, external_ticket_id: str) -> Ticket | None:
    return db.execute(
        select(Ticket).where(
            Ticket.integration_id == integration_id,
            Ticket.external_ticket_id == external_ticket_id,
        )
    ).scalar_one_or_none()


def find_overrides(
    db: Session, integration_id: UUID, external_ticket_ids: list[str]
) -> dict[str, Ticket]:
    """Batch lookup of local rows for one integration, keyed by external id."""
    if not external_ticket_ids:
        return {}
    rows = db.execute(
        select(Ticket).where(
            Ticket.integration_id == integration_id,
            Ticket.external_ticket_id.in_(external_ticket_ids),
        )
    ).scalars()
    return {row.external_ticket_id: row for row in rows}


# =============================================================================
# Overlay
# =============================================================================

def _comment_sort_key(comment: CommentRead) -> tuple[int, float]:
    timestamp = comment.timestamp
    if timestamp is None:
        return (1, 0.0)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    # Newest first, untimestamped comments last
    return (0, -timestamp.timestamp())


def _external_comment(comment: ExternalComment) -> CommentRead:
    return CommentRead(
        id=comment.id,
        author=comment.author,
        content=comment.content,
        timestamp=comment.timestamp,
    )


def merge_comments(external: list[ExternalComment], local: Ticket | None) -> list[CommentRead]:
    comments = [_external_comment(comment) for comment in external]
    if local is not None:
        comments.extend(
            CommentRead(
                id=str(comment.id),
                author=comment.author,
                content=comment.content,
                timestamp=comment.created_at,
            )
            for comment in local.comments
        )
    return sorted(comments, key=_comment_sort_key)


def resolve_external_ticket(
    external: ExternalTicket,
    integration: Integration,
    override: Ticket | None,
) -> TicketRead:
    """Apply a local override (if any) on top of a tracker snapshot."""
    status = TicketStatusRead(name=external.status_name, color=external.status_color)
    priority = TicketPriorityRead(
        name=external.priority_name,
        color=external.priority_color,
        value=external.priority_value,
    )
    assigned_agent_id = None
    assigned_workflow_id = None

    if override is not None:
        if override.status is not None:
            status = TicketStatusRead(
                id=override.status.id, name=override.status.name, color=override.status.color
            )
        if override.priority is not None:
            priority = TicketPriorityRead(
                id=override.priority.id,
                name=override.priority.name,
                color=override.priority.color,
                value=override.priority.value,
            )
        assigned_agent_id = override.assigned_agent_id
        assigned_workflow_id = override.assigned_workflow_id

    return TicketRead(
        id=build_composite_id(integration.id, external.external_ticket_id),
        workspace_id=integration.workspace_id,
        title=external.title,
        description=external.description or "",
        status=status,
        priority=priority,
        internal=False,
        integration_id=integration.id,
        external_ticket_id=external.external_ticket_id,
        external_url=external.external_url or None,
        source=source_label(integration.provider),
        assigned_agent_id=assigned_agent_id,
        assigned_workflow_id=assigned_workflow_id,
        comments=merge_comments(external.comments, override),
    )


def resolve_external_tickets(
    db: Session,
    tickets: list[ExternalTicket],
    integrations: dict[UUID, Integration],
) -> list[TicketRead]:
    """Overlay a batch of tracker snapshots, one override query per integration."""
    ids_by_integration: dict[UUID, list[str]] = {}
    for ticket in tickets:
        ids_by_integration.setdefault(ticket.integration_id, []).append(ticket.external_ticket_id)

    overrides: dict[tuple[UUID, str], Ticket] = {}
    for integration_id, external_ids in ids_by_integration.items():
        for external_id, row in find_overrides(db, integration_id, external_ids).items():
            overrides[(integration_id, external_id)] = row

    return [
        resolve_external_ticket(
            ticket,
            integrations[ticket.integration_id],
            overrides.get((ticket.integration_id, ticket.external_ticket_id)),
        )
        for ticket in tickets
    ]


# =============================================================================
# Materialization
# =============================================================================

def materialize_external_ticket(
    db: Session,
    *,
    integration: Integration,
    external: ExternalTicket,
    assignments: dict[str, UUID | None],
) -> Ticket:
    """Create the local row for an external ticket and apply assignments.

    The status starts at the seeded default and the priority is the catalog
    entry closest to the tracker's priority value. When another request
    materializes the same ticket first, the unique constraint rejects this
    insert and the assignments are applied to the winner's row instead.
    """
    priority = ticket_catalog_service.find_closest_priority(
        ticket_catalog_service.list_priorities(db), external.priority_value
    )
    default_status = ticket_catalog_service.get_default_status(db)

    integration_id = integration.id
    external_id = external.external_ticket_id
    ticket = Ticket(
        workspace_id=integration.workspace_id,
        title=external.title,
        description=external.description or "",
        status_id=default_status.id if default_status else None,
        priority_id=priority.id if priority else None,
        integration_id=integration_id,
        external_ticket_id=external_id,
        is_internal=False,
    )
    db.add(ticket)
    try:
        db.commit()
        logger.info(
            "Materialized external ticket %s from integration %s",
            external_id,
            integration_id,
        )
    except IntegrityError:
        db.rollback()
        ticket = find_override(db, integration_id, external_id)
        if ticket is None:
            raise
        logger.info(
            "External ticket %s from integration %s was materialized concurrently; "
            "applying assignment to existing row",
            external_id,
            integration_id,
        )

    apply_assignments(ticket, assignments)
    db.commit()
    db.refresh(ticket)
    return ticket


def apply_assignments(ticket: Ticket, assignments: dict[str, UUID | None]) -> None:
    """Set only the assignment fields present in ``assignments``."""
    if "assigned_agent_id" in assignments:
        ticket.assigned_agent_id = assignments["assigned_agent_id"]
    if "assigned_workflow_id" in assignments:
        ticket.assigned_workflow_id = assignments["assigned_workflow_id"]
