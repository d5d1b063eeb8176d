"""Ticket service exceptions.

Each error carries the HTTP status the API layer responds with.
"""


class TicketServiceError(Exception):
    """Base exception for ticket service errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TicketNotFoundError(TicketServiceError):
    """Ticket not found (locally or in the external tracker)."""

    status_code = 404


class IntegrationNotFoundError(TicketServiceError):
    """Integration not found."""

    status_code = 404


class AssignmentTargetNotFoundError(TicketServiceError):
    """Agent or workflow referenced by an assignment does not exist."""

    status_code = 404


class WorkspaceAccessDeniedError(TicketServiceError):
    """User is not a member of the ticket's workspace."""

    status_code = 403


class InvalidTicketOperationError(TicketServiceError):
    """Operation is not allowed for this ticket in its current state."""

    status_code = 409


class InvalidTicketArgumentError(TicketServiceError):
    """Request argument is malformed or missing."""

    status_code = 400


class InvalidTicketIdError(InvalidTicketArgumentError):
    """Ticket id is neither a GUID nor a composite external id."""

    pass


class ProviderTransientError(TicketServiceError):
    """External tracker call failed (network, auth, 5xx)."""

    status_code = 502


class SummarizationError(TicketServiceError):
    """Ticket summary could not be generated (not configured or model failure)."""

    status_code = 502
