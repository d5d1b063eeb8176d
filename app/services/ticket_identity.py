"""Ticket identifiers: internal GUIDs and composite external ids.

Internal tickets are addressed by their GUID. External (and materialized)
tickets are addressed by ``"{integration_id}:{external_ticket_id}"``; the
external part is opaque and may itself contain colons.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from app.services.ticket_errors import InvalidTicketIdError

COMPOSITE_SEPARATOR = ":"


class TicketIdKind(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True)
class ParsedTicketId:
    kind: TicketIdKind
    internal_id: UUID | None = None
    integration_id: UUID | None = None
    external_ticket_id: str | None = None

    @property
    def is_internal(self) -> bool:
        return self.kind == TicketIdKind.INTERNAL


def _try_uuid(value: str) -> UUID | None:
    try:
        return UUID(value.strip())
    except (ValueError, AttributeError):
        return None


def is_guid_format(ticket_id: str | None) -> bool:
    if not ticket_id or not ticket_id.strip():
        return False
    return _try_uuid(ticket_id) is not None


def is_composite_format(ticket_id: str | None) -> bool:
    if not ticket_id or COMPOSITE_SEPARATOR not in ticket_id:
        return False
    left, _, right = ticket_id.partition(COMPOSITE_SEPARATOR)
    return _try_uuid(left) is not None and bool(right.strip())


def parse_ticket_id(ticket_id: str | None) -> ParsedTicketId:
    """Parse a ticket id into its internal or external form.

    Raises:
        InvalidTicketIdError: blank input, no separator, a non-GUID
            integration part, or an empty external part.
    """
    if not ticket_id or not ticket_id.strip():
        raise InvalidTicketIdError("Ticket ID cannot be empty")

    internal_id = _try_uuid(ticket_id)
    if internal_id is not None:
        return ParsedTicketId(kind=TicketIdKind.INTERNAL, internal_id=internal_id)

    if COMPOSITE_SEPARATOR not in ticket_id:
        raise InvalidTicketIdError(
            "Invalid ticket ID format. Expected a GUID or "
            "'{integrationId}:{externalTicketId}'"
        )

    # Split on the first separator only
    left, _, right = ticket_id.partition(COMPOSITE_SEPARATOR)
    integration_id = _try_uuid(left)
    if integration_id is None:
        raise InvalidTicketIdError(f"Invalid integration ID in ticket ID: {left}")
    if not right.strip():
        raise InvalidTicketIdError("External ticket ID cannot be empty")

    return ParsedTicketId(
        kind=TicketIdKind.EXTERNAL,
        integration_id=integration_id,
        external_ticket_id=right,
    )


def build_composite_id(integration_id: UUID | str, external_ticket_id: str) -> str:
    return f"{integration_id}{COMPOSITE_SEPARATOR}{external_ticket_id}"
