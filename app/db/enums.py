"""Enum definitions for application constants."""

from enum import Enum


class ProviderType(str, Enum):
    """External system an integration talks to."""
    JIRA = "jira"
    AZURE_DEVOPS = "azure_devops"
    LINEAR = "linear"
    GITHUB = "github"
    GITLAB = "gitlab"
    CONFLUENCE = "confluence"
    NOTION = "notion"
    CUSTOM = "custom"
    INTERNAL = "internal"
    
    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid provider type."""
        return value in cls._value2member_map_


class IntegrationType(str, Enum):
    """
    What an integration is used for.
    
    Only TRACKER integrations take part in ticket listing and conversion.
    """
    TRACKER = "tracker"
    KNOWLEDGE_BASE = "knowledge_base"
    CODE_SOURCE = "code_source"


class JiraType(str, Enum):
    """Jira deployment flavour (selects the REST API version)."""
    CLOUD = "cloud"
    ON_PREMISE = "on_premise"


class WorkspaceRole(str, Enum):
    """Member roles within a workspace."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TicketPhase(str, Enum):
    """Which source the list cursor is currently draining."""
    INTERNAL = "internal"
    EXTERNAL = "external"
