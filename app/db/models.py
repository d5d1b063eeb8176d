"""SQLAlchemy ORM models for workspaces, integrations, and tickets."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import IntegrationType, WorkspaceRole
from app.db.types import EncryptedString


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Workspace & Membership
# =============================================================================

class Workspace(Base):
    """
    A tenant workspace.

    Tickets, integrations, agents and workflows all belong to a workspace
    and must be scoped by workspace_id in all queries.
    """
    __tablename__ = "workspaces"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )

    members: Mapped[list["WorkspaceMember"]] = relationship(
        back_populates="workspace", cascade="all, delete-orphan"
    )
    integrations: Mapped[list["Integration"]] = relationship(
        back_populates="workspace", cascade="all, delete-orphan"
    )


class User(Base):
    """A person who can sign in and belong to workspaces."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )

    memberships: Mapped[list["WorkspaceMember"]] = relationship(back_populates="user")


class WorkspaceMember(Base):
    """Links a user to a workspace with a role."""
    __tablename__ = "workspace_members"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
        Index("idx_workspace_members_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(50), default=WorkspaceRole.MEMBER.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )

    workspace: Mapped["Workspace"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="memberships")


# =============================================================================
# Integrations
# =============================================================================

class Integration(Base):
    """
    Connection to an external system (issue tracker, knowledge base, ...).

    The API key is encrypted at rest. Only active TRACKER integrations
    contribute tickets to the workspace ticket list.
    """
    __tablename__ = "integrations"
    __table_args__ = (
        Index("idx_integrations_workspace_type", "workspace_id", "integration_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    integration_type: Mapped[str] = mapped_column(
        String(50), default=IntegrationType.TRACKER.value, nullable=False
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    jira_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_key: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    # Jira JQL filter; GitHub and GitLab resolve the repository from url
    filter_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False
    )

    workspace: Mapped["Workspace"] = relationship(back_populates="integrations")


# =============================================================================
# Assignment targets
# =============================================================================

class Agent(Base):
    """An automated agent that tickets can be assigned to."""
    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )


class Workflow(Base):
    """A workflow that tickets can be routed through."""
    __tablename__ = "workflows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Ticket catalog
# =============================================================================

class TicketStatus(Base):
    """Global ticket status (seeded, shared by all workspaces)."""
    __tablename__ = "ticket_statuses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(255), nullable=False)


class TicketPriority(Base):
    """Global ticket priority; higher value means more urgent."""
    __tablename__ = "ticket_priorities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)


# =============================================================================
# Tickets
# =============================================================================

class Ticket(Base):
    """
    A locally stored ticket.

    Pure internal tickets have neither integration_id nor external_ticket_id.
    Materialized tickets carry both and act as a local overlay (status,
    priority, assignment) over the record living in the external tracker.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint(
            "integration_id", "external_ticket_id",
            name="uq_tickets_integration_external",
        ),
        CheckConstraint(
            "(integration_id IS NULL AND external_ticket_id IS NULL) "
            "OR (integration_id IS NOT NULL AND external_ticket_id IS NOT NULL)",
            name="external_ref_pair",
        ),
        Index("idx_tickets_workspace_id", "workspace_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("ticket_statuses.id", ondelete="SET NULL"), nullable=True
    )
    priority_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("ticket_priorities.id", ondelete="SET NULL"), nullable=True
    )
    integration_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True
    )
    external_ticket_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_agent_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    assigned_workflow_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True
    )
    is_internal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        onupdate=_utcnow, nullable=True
    )

    status: Mapped["TicketStatus | None"] = relationship()
    priority: Mapped["TicketPriority | None"] = relationship()
    comments: Mapped[list["TicketComment"]] = relationship(
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketComment.created_at.desc()",
    )

    @property
    def is_pure_internal(self) -> bool:
        return self.integration_id is None and self.external_ticket_id is None


class TicketComment(Base):
    """Comment stored locally against a ticket."""
    __tablename__ = "ticket_comments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="comments")
