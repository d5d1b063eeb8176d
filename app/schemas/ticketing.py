"""Pydantic schemas for the hybrid ticket API."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON uses camelCase; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommentRead(CamelModel):
    """Comment from the local store or an external tracker."""

    id: str
    author: str
    content: str
    timestamp: datetime | None = None


class TicketStatusRead(CamelModel):
    """Status as shown on a ticket (id is null for tracker-native statuses)."""

    id: UUID | None = None
    name: str
    color: str


class TicketPriorityRead(CamelModel):
    """Priority as shown on a ticket (id is null for tracker-native priorities)."""

    id: UUID | None = None
    name: str
    color: str
    value: int


class TicketRead(CamelModel):
    """Unified ticket: internal, external, or materialized external."""

    id: str
    workspace_id: UUID
    title: str
    description: str = ""
    status: TicketStatusRead | None = None
    priority: TicketPriorityRead | None = None
    internal: bool
    integration_id: UUID | None = None
    external_ticket_id: str | None = None
    external_url: str | None = None
    source: str
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None
    comments: list[CommentRead] = Field(default_factory=list)
    satisfaction: int | None = None
    summary: str | None = None


class PaginatedTicketsResponse(CamelModel):
    """One page of the hybrid ticket list."""

    items: list[TicketRead]
    next_page_token: str | None = None
    is_last: bool
    total_count: int


class TicketCreate(CamelModel):
    """Create an internal ticket."""

    workspace_id: UUID
    title: str = Field(..., max_length=500)
    description: str = Field("", max_length=5000)
    status_id: UUID
    priority_id: UUID
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None


class TicketUpdate(CamelModel):
    """
    Partial ticket update.

    Only fields present in the request are applied; an explicit null
    assignment unassigns.
    """

    status_id: UUID | None = None
    priority_id: UUID | None = None
    description: str | None = Field(None, max_length=5000)
    assigned_agent_id: UUID | None = None
    assigned_workflow_id: UUID | None = None


class CommentCreate(CamelModel):
    """Add a comment to a ticket."""

    content: str = Field(..., max_length=10000)


class ConvertToExternalRequest(CamelModel):
    """Push an internal ticket into a tracker integration."""

    integration_id: UUID
    issue_type_name: str = "Task"


class TicketStatusList(CamelModel):
    items: list[TicketStatusRead]


class TicketPriorityList(CamelModel):
    items: list[TicketPriorityRead]
