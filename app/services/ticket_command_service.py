"""Ticket mutations: create, update (with promotion), delete, comment, convert."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import IntegrationType
from app.db.models import Agent, Integration, Ticket, TicketComment, User, Workflow
from app.schemas.ticketing import CommentRead, TicketCreate, TicketRead, TicketUpdate
from app.services import (
    integration_service,
    materialization_service,
    ticket_catalog_service,
    ticket_query_service,
    workspace_access,
)
from app.services.ticket_errors import (
    AssignmentTargetNotFoundError,
    IntegrationNotFoundError,
    InvalidTicketArgumentError,
    InvalidTicketOperationError,
    TicketNotFoundError,
)
from app.services.ticket_identity import build_composite_id, parse_ticket_id
from app.services.ticket_providers import TicketProvider, get_ticket_provider

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 5000
ASSIGNMENT_FIELDS = ("assigned_agent_id", "assigned_workflow_id")


# =============================================================================
# Helpers
# =============================================================================

def _get_ticket(db: Session, ticket_id: UUID) -> Ticket:
    ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def _get_integration(db: Session, integration_id: UUID) -> Integration:
    integration = integration_service.get_integration(db, integration_id)
    if integration is None:
        raise IntegrationNotFoundError(f"Integration {integration_id} not found")
    return integration


def _require_provider(integration: Integration) -> TicketProvider:
    provider = get_ticket_provider(integration.provider)
    if provider is None:
        raise InvalidTicketOperationError(
            f"Provider {integration.provider} does not support ticket operations"
        )
    return provider


def validate_assignments(
    db: Session, *, workspace_id: UUID, assignments: dict[str, UUID | None]
) -> None:
    """Assignment targets must exist and belong to the ticket's workspace."""
    targets = (("assigned_agent_id", Agent, "Agent"), ("assigned_workflow_id", Workflow, "Workflow"))
    for field_name, model, label in targets:
        target_id = assignments.get(field_name)
        if target_id is None:
            continue
        target = db.get(model, target_id)
        if target is None:
            raise AssignmentTargetNotFoundError(f"{label} {target_id} not found")
        if target.workspace_id != workspace_id:
            raise InvalidTicketOperationError(
                f"{label} {target_id} belongs to a different workspace"
            )


def _apply_update(db: Session, ticket: Ticket, payload: TicketUpdate, fields: set[str]) -> None:
    if "status_id" in fields:
        if payload.status_id is None or ticket_catalog_service.get_status(db, payload.status_id) is None:
            raise InvalidTicketArgumentError(f"Status {payload.status_id} not found")
        ticket.status_id = payload.status_id

    if "priority_id" in fields:
        if payload.priority_id is None or ticket_catalog_service.get_priority(db, payload.priority_id) is None:
            raise InvalidTicketArgumentError(f"Priority {payload.priority_id} not found")
        ticket.priority_id = payload.priority_id

    if "description" in fields:
        if not ticket.is_pure_internal:
            raise InvalidTicketOperationError(
                "Description can only be updated for internal tickets"
            )
        description = payload.description or ""
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise InvalidTicketArgumentError(
                f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
            )
        ticket.description = description

    assignments = {name: getattr(payload, name) for name in ASSIGNMENT_FIELDS if name in fields}
    validate_assignments(db, workspace_id=ticket.workspace_id, assignments=assignments)
    materialization_service.apply_assignments(ticket, assignments)


# =============================================================================
# Create
# =============================================================================

async def create_ticket(db: Session, *, user_id: UUID, payload: TicketCreate) -> TicketRead:
    """Create a pure internal ticket."""
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=payload.workspace_id)

    title = payload.title.strip()
    if not title:
        raise InvalidTicketArgumentError("Title is required")
    if ticket_catalog_service.get_status(db, payload.status_id) is None:
        raise InvalidTicketArgumentError(f"Status {payload.status_id} not found")
    if ticket_catalog_service.get_priority(db, payload.priority_id) is None:
        raise InvalidTicketArgumentError(f"Priority {payload.priority_id} not found")

    assignments = {name: getattr(payload, name) for name in ASSIGNMENT_FIELDS}
    validate_assignments(db, workspace_id=payload.workspace_id, assignments=assignments)

    ticket = Ticket(
        workspace_id=payload.workspace_id,
        title=title,
        description=payload.description or "",
        status_id=payload.status_id,
        priority_id=payload.priority_id,
        assigned_agent_id=payload.assigned_agent_id,
        assigned_workflow_id=payload.assigned_workflow_id,
        is_internal=True,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    logger.info("Created internal ticket %s in workspace %s", ticket.id, ticket.workspace_id)

    view = ticket_query_service.internal_ticket_view(ticket)
    await ticket_query_service.attach_satisfaction([view])
    return view


# =============================================================================
# Update
# =============================================================================

async def update_ticket(
    db: Session, *, ticket_id: str, user_id: UUID, payload: TicketUpdate
) -> TicketRead:
    """Apply a partial update.

    For an external ticket without a local row, the only accepted update is
    one that assigns it; that creates the local row (promotion).
    """
    fields = set(payload.model_fields_set)
    if not fields:
        raise InvalidTicketArgumentError("At least one field must be provided for update")

    parsed = parse_ticket_id(ticket_id)
    if parsed.is_internal:
        ticket = _get_ticket(db, parsed.internal_id)
        workspace_access.ensure_member(db, user_id=user_id, workspace_id=ticket.workspace_id)
        _apply_update(db, ticket, payload, fields)
        db.commit()
        return await ticket_query_service.get_ticket_by_id(
            db, ticket_id=str(ticket.id), user_id=user_id
        )

    integration = _get_integration(db, parsed.integration_id)
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=integration.workspace_id)
    provider = _require_provider(integration)
    external_id = provider.normalize_external_id(parsed.external_ticket_id)

    if "description" in fields:
        raise InvalidTicketOperationError(
            "Description can only be updated for internal tickets"
        )

    override = materialization_service.find_override(db, integration.id, external_id)
    if override is not None:
        _apply_update(db, override, payload, fields)
        db.commit()
    else:
        if "status_id" in fields or "priority_id" in fields:
            raise InvalidTicketOperationError(
                "Status and priority can only be changed after the external ticket "
                "has been assigned to an agent or workflow"
            )
        assignments = {name: getattr(payload, name) for name in ASSIGNMENT_FIELDS if name in fields}
        if not any(value is not None for value in assignments.values()):
            raise InvalidTicketOperationError(
                "External tickets must be assigned to an agent or workflow before they can be updated"
            )
        validate_assignments(db, workspace_id=integration.workspace_id, assignments=assignments)
        external = await ticket_query_service.get_external_snapshot(integration, external_id)
        materialization_service.materialize_external_ticket(
            db, integration=integration, external=external, assignments=assignments
        )

    return await ticket_query_service.get_ticket_by_id(
        db, ticket_id=build_composite_id(integration.id, external_id), user_id=user_id
    )


# =============================================================================
# Delete
# =============================================================================

def delete_ticket(db: Session, *, ticket_id: str, user_id: UUID) -> None:
    """Delete a pure internal ticket."""
    parsed = parse_ticket_id(ticket_id)
    if not parsed.is_internal:
        raise InvalidTicketOperationError("External tickets cannot be deleted")

    ticket = _get_ticket(db, parsed.internal_id)
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=ticket.workspace_id)
    if not materialization_service.can_delete(ticket):
        raise InvalidTicketOperationError(
            "Tickets linked to an external tracker cannot be deleted"
        )

    db.delete(ticket)
    db.commit()
    logger.info("Deleted ticket %s", parsed.internal_id)


# =============================================================================
# Comments
# =============================================================================

def _author_name(db: Session, user_id: UUID) -> str:
    user = db.get(User, user_id)
    return user.display_name if user else "Unknown"


async def _add_external_comment(
    db: Session, *, integration_id: UUID, external_id: str, user_id: UUID, content: str
) -> CommentRead:
    integration = _get_integration(db, integration_id)
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=integration.workspace_id)
    provider = _require_provider(integration)
    comment = await provider.add_comment(
        integration,
        provider.normalize_external_id(external_id),
        content,
        _author_name(db, user_id),
    )
    return CommentRead(
        id=comment.id,
        author=comment.author,
        content=comment.content,
        timestamp=comment.timestamp,
    )


async def add_comment(db: Session, *, ticket_id: str, user_id: UUID, content: str) -> CommentRead:
    """Store a comment locally, or post it to the tracker for external tickets."""
    if not content or not content.strip():
        raise InvalidTicketArgumentError("Comment content is required")

    parsed = parse_ticket_id(ticket_id)
    if not parsed.is_internal:
        return await _add_external_comment(
            db,
            integration_id=parsed.integration_id,
            external_id=parsed.external_ticket_id,
            user_id=user_id,
            content=content,
        )

    ticket = _get_ticket(db, parsed.internal_id)
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=ticket.workspace_id)
    if not ticket.is_pure_internal:
        return await _add_external_comment(
            db,
            integration_id=ticket.integration_id,
            external_id=ticket.external_ticket_id,
            user_id=user_id,
            content=content,
        )

    comment = TicketComment(
        ticket_id=ticket.id,
        author=_author_name(db, user_id),
        content=content,
    )
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return CommentRead(
        id=str(comment.id),
        author=comment.author,
        content=comment.content,
        timestamp=comment.created_at,
    )


# =============================================================================
# Convert
# =============================================================================

async def convert_to_external(
    db: Session,
    *,
    ticket_id: str,
    user_id: UUID,
    integration_id: UUID,
    issue_type_name: str = "Task",
) -> TicketRead:
    """Create a tracker issue from an internal ticket and link the two.

    The ticket keeps its id and assignments; its status and priority are
    cleared so the tracker's values show through.
    """
    parsed = parse_ticket_id(ticket_id)
    if not parsed.is_internal:
        raise InvalidTicketOperationError("Only internal tickets can be converted")

    ticket = _get_ticket(db, parsed.internal_id)
    workspace_access.ensure_member(db, user_id=user_id, workspace_id=ticket.workspace_id)
    if not ticket.is_pure_internal:
        raise InvalidTicketOperationError("Ticket is already linked to an external tracker")

    integration = _get_integration(db, integration_id)
    if integration.workspace_id != ticket.workspace_id:
        raise InvalidTicketOperationError("Integration belongs to a different workspace")
    if integration.integration_type != IntegrationType.TRACKER.value:
        raise InvalidTicketOperationError("Integration is not an issue tracker")
    if not integration.is_active:
        raise InvalidTicketOperationError("Integration is not active")
    provider = _require_provider(integration)

    created = await provider.create_issue(
        integration,
        ticket.title,
        ticket.description or "",
        issue_type_name or "Task",
    )
    external_id = provider.normalize_external_id(created.issue_key)

    ticket.integration_id = integration.id
    ticket.external_ticket_id = external_id
    ticket.status_id = None
    ticket.priority_id = None
    ticket.is_internal = False
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidTicketOperationError(
            f"External ticket {external_id} is already linked to another ticket"
        ) from exc

    logger.info(
        "Converted ticket %s to external issue %s in integration %s",
        ticket.id,
        created.issue_key,
        integration.id,
    )
    return await ticket_query_service.get_ticket_by_id(
        db, ticket_id=build_composite_id(integration.id, external_id), user_id=user_id
    )
