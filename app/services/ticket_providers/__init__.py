"""External ticket providers keyed by integration provider type."""

from app.db.enums import ProviderType
from app.services.ticket_providers.base import (
    CreatedIssue,
    ExternalComment,
    ExternalTicket,
    ProviderPage,
    TicketProvider,
)
from app.services.ticket_providers.github import GitHubTicketProvider
from app.services.ticket_providers.gitlab import GitLabTicketProvider
from app.services.ticket_providers.jira import JiraTicketProvider

_PROVIDERS: dict[ProviderType, TicketProvider] = {
    ProviderType.JIRA: JiraTicketProvider(),
    ProviderType.GITHUB: GitHubTicketProvider(),
    ProviderType.GITLAB: GitLabTicketProvider(),
}


def get_ticket_provider(provider_type: ProviderType | str | None) -> TicketProvider | None:
    """Return the provider for a type, or None when the type has no adapter."""
    if provider_type is None:
        return None
    if not isinstance(provider_type, ProviderType):
        if not ProviderType.has_value(provider_type):
            return None
        provider_type = ProviderType(provider_type)
    return _PROVIDERS.get(provider_type)


__all__ = [
    "CreatedIssue",
    "ExternalComment",
    "ExternalTicket",
    "ProviderPage",
    "TicketProvider",
    "get_ticket_provider",
]
