"""Global ticket status and priority catalog."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import TicketPriority, TicketStatus

# Seeded rows (ids are stable across environments)
DEFAULT_STATUS_ID = UUID("55555555-5555-5555-5555-555555555555")

SEED_STATUSES = [
    (DEFAULT_STATUS_ID, "New", "bg-blue-500/20 text-blue-400"),
    (UUID("66666666-6666-6666-6666-666666666666"), "To Do", "bg-purple-500/20 text-purple-400"),
    (UUID("77777777-7777-7777-7777-777777777777"), "InProgress", "bg-yellow-500/20 text-yellow-400"),
    (UUID("88888888-8888-8888-8888-888888888888"), "Completed", "bg-emerald-500/20 text-emerald-400"),
]

SEED_PRIORITIES = [
    (UUID("11111111-1111-1111-1111-111111111111"), "Low", "bg-slate-500/10 text-slate-400 border border-slate-500/20", 1),
    (UUID("22222222-2222-2222-2222-222222222222"), "Medium", "bg-blue-500/10 text-blue-400 border border-blue-500/20", 2),
    (UUID("33333333-3333-3333-3333-333333333333"), "High", "bg-orange-500/10 text-orange-400 border border-orange-500/20", 3),
    (UUID("44444444-4444-4444-4444-444444444444"), "Critical", "bg-red-500/10 text-red-400 border border-red-500/20", 4),
]


def seed_ticket_catalog(db: Session) -> None:
    """Insert any missing seeded statuses and priorities."""
    for status_id, name, color in SEED_STATUSES:
        if db.get(TicketStatus, status_id) is None:
            db.add(TicketStatus(id=status_id, name=name, color=color))
    for priority_id, name, color, value in SEED_PRIORITIES:
        if db.get(TicketPriority, priority_id) is None:
            db.add(TicketPriority(id=priority_id, name=name, color=color, value=value))
    db.commit()


def list_statuses(db: Session) -> list[TicketStatus]:
    return list(db.execute(select(TicketStatus).order_by(TicketStatus.name)).scalars())


def list_priorities(db: Session) -> list[TicketPriority]:
    return list(
        db.execute(
            select(TicketPriority).order_by(TicketPriority.value, TicketPriority.name)
        ).scalars()
    )


def get_status(db: Session, status_id: UUID | None) -> TicketStatus | None:
    if status_id is None:
        return None
    return db.get(TicketStatus, status_id)


def get_priority(db: Session, priority_id: UUID | None) -> TicketPriority | None:
    if priority_id is None:
        return None
    return db.get(TicketPriority, priority_id)


def get_default_status(db: Session) -> TicketStatus | None:
    return db.get(TicketStatus, DEFAULT_STATUS_ID)


def find_closest_priority(
    priorities: list[TicketPriority], external_value: int
) -> TicketPriority | None:
    """Nearest priority by absolute value difference; ties go to the earlier entry."""
    closest = None
    for priority in priorities:
        if closest is None or abs(priority.value - external_value) < abs(closest.value - external_value):
            closest = priority
    return closest
