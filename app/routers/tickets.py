"""Hybrid ticket list/detail/mutation APIs."""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, get_db, require_csrf_header
from app.core.structured_logging import build_log_context
from app.db.models import User
from app.schemas.ticketing import (
    CommentCreate,
    CommentRead,
    ConvertToExternalRequest,
    PaginatedTicketsResponse,
    TicketCreate,
    TicketPriorityList,
    TicketPriorityRead,
    TicketRead,
    TicketStatusList,
    TicketStatusRead,
    TicketUpdate,
)
from app.services import ticket_catalog_service, ticket_command_service, ticket_query_service
from app.services.ticket_errors import TicketServiceError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tickets",
    tags=["Tickets"],
    dependencies=[Depends(get_current_user)],
)


def _http_error(request: Request, user: User, exc: TicketServiceError) -> HTTPException:
    if exc.status_code >= 500:
        logger.warning(
            "Ticket request failed: %s",
            exc.message,
            extra=build_log_context(
                user_id=str(user.id),
                request_id=request.headers.get("X-Request-ID"),
                route=request.url.path,
                method=request.method,
            ),
        )
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# =============================================================================
# Catalog
# =============================================================================

@router.get("/statuses", response_model=TicketStatusList)
def list_statuses(db: Session = Depends(get_db)) -> TicketStatusList:
    """All ticket statuses."""
    return TicketStatusList(
        items=[
            TicketStatusRead(id=s.id, name=s.name, color=s.color)
            for s in ticket_catalog_service.list_statuses(db)
        ]
    )


@router.get("/priorities", response_model=TicketPriorityList)
def list_priorities(db: Session = Depends(get_db)) -> TicketPriorityList:
    """All ticket priorities, lowest value first."""
    return TicketPriorityList(
        items=[
            TicketPriorityRead(id=p.id, name=p.name, color=p.color, value=p.value)
            for p in ticket_catalog_service.list_priorities(db)
        ]
    )


# =============================================================================
# Read
# =============================================================================

@router.get("", response_model=PaginatedTicketsResponse)
async def list_tickets(
    request: Request,
    workspace_id: Annotated[UUID, Query(alias="workspaceId")],
    page_token: Annotated[str | None, Query(alias="pageToken")] = None,
    page_size: Annotated[int | None, Query(alias="pageSize")] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PaginatedTicketsResponse:
    """List internal and external tickets with continuation-token pagination."""
    try:
        return await ticket_query_service.list_tickets(
            db,
            workspace_id=workspace_id,
            user_id=user.id,
            page_token=page_token,
            page_size=page_size,
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)


@router.get("/{ticket_id}", response_model=TicketRead)
async def get_ticket(
    ticket_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TicketRead:
    """Get a ticket by GUID or by "{integrationId}:{externalTicketId}"."""
    try:
        return await ticket_query_service.get_ticket_by_id(
            db, ticket_id=ticket_id, user_id=user.id
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)


# =============================================================================
# Mutations
# =============================================================================

@router.post(
    "",
    response_model=TicketRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
async def create_ticket(
    data: TicketCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TicketRead:
    """Create an internal ticket."""
    try:
        return await ticket_command_service.create_ticket(db, user_id=user.id, payload=data)
    except TicketServiceError as e:
        raise _http_error(request, user, e)


@router.patch(
    "/{ticket_id}",
    response_model=TicketRead,
    dependencies=[Depends(require_csrf_header)],
)
async def update_ticket(
    ticket_id: str,
    data: TicketUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TicketRead:
    """Update status, priority, description or assignments.

    Assigning an external ticket for the first time stores a local copy.
    """
    try:
        return await ticket_command_service.update_ticket(
            db, ticket_id=ticket_id, user_id=user.id, payload=data
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)


@router.delete(
    "/{ticket_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_ticket(
    ticket_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Response:
    """Delete an internal ticket."""
    try:
        ticket_command_service.delete_ticket(db, ticket_id=ticket_id, user_id=user.id)
    except TicketServiceError as e:
        raise _http_error(request, user, e)
    return Response(status_code=204)


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
async def add_comment(
    ticket_id: str,
    data: CommentCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CommentRead:
    """Add a comment; external tickets get it posted to their tracker."""
    try:
        return await ticket_command_service.add_comment(
            db, ticket_id=ticket_id, user_id=user.id, content=data.content
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)


@router.post(
    "/{ticket_id}/convert",
    response_model=TicketRead,
    dependencies=[Depends(require_csrf_header)],
)
async def convert_to_external(
    ticket_id: str,
    data: ConvertToExternalRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TicketRead:
    """Create a tracker issue from an internal ticket."""
    try:
        return await ticket_command_service.convert_to_external(
            db,
            ticket_id=ticket_id,
            user_id=user.id,
            integration_id=data.integration_id,
            issue_type_name=data.issue_type_name,
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)


@router.post(
    "/{ticket_id}/summarize",
    response_model=TicketRead,
    dependencies=[Depends(require_csrf_header)],
)
async def summarize_ticket(
    ticket_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TicketRead:
    """Ticket details with an AI-generated summary (not stored)."""
    try:
        return await ticket_query_service.summarize_ticket(
            db, ticket_id=ticket_id, user_id=user.id
        )
    except TicketServiceError as e:
        raise _http_error(request, user, e)
