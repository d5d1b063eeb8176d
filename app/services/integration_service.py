"""Integration lookups used by the ticket services."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import IntegrationType
from app.db.models import Integration


def get_integration(db: Session, integration_id: UUID) -> Integration | None:
    return db.get(Integration, integration_id)


def list_active_tracker_integrations(db: Session, *, workspace_id: UUID) -> list[Integration]:
    """Active TRACKER integrations of a workspace, oldest first (stable fan-out order)."""
    return list(
        db.execute(
            select(Integration)
            .where(
                Integration.workspace_id == workspace_id,
                Integration.integration_type == IntegrationType.TRACKER.value,
                Integration.is_active.is_(True),
            )
            .order_by(Integration.created_at, Integration.id)
        ).scalars()
    )
