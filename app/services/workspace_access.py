"""Workspace membership checks."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import WorkspaceMember
from app.services.ticket_errors import WorkspaceAccessDeniedError


def is_member(db: Session, *, user_id: UUID, workspace_id: UUID) -> bool:
    member_id = db.execute(
        select(WorkspaceMember.id).where(
            WorkspaceMember.user_id == user_id,
            WorkspaceMember.workspace_id == workspace_id,
        )
    ).scalar_one_or_none()
    return member_id is not None


def ensure_member(db: Session, *, user_id: UUID, workspace_id: UUID) -> None:
    """Raise WorkspaceAccessDeniedError unless the user belongs to the workspace."""
    if not is_member(db, user_id=user_id, workspace_id=workspace_id):
        raise WorkspaceAccessDeniedError(
            f"User {user_id} is not a member of workspace {workspace_id}"
        )
