"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt and seeded for each test
- Workspace, member, agent, workflow and tracker integration rows
- A scriptable fake ticket provider registered in place of Jira
- HTTPX AsyncClient with session cookie and CSRF header
"""
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["TESTING"] = "1"
os.environ["SENTIMENT_API_KEY"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.deps import COOKIE_NAME, get_db
from app.core.security import create_session_token
from app.db.base import Base
from app.db.enums import ProviderType
from app.db.models import Agent, Integration, Ticket, User, Workflow, Workspace, WorkspaceMember
from app.main import app
from app.services import ticket_catalog_service, ticket_providers
from app.services.ticket_errors import ProviderTransientError
from app.services.ticket_providers import (
    CreatedIssue,
    ExternalComment,
    ExternalTicket,
    ProviderPage,
    TicketProvider,
)


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test with the status/priority catalog seeded.

    App code commits freely; the tables are dropped afterwards.
    """
    Base.metadata.create_all(test_engine)
    session = TestingSessionLocal()
    ticket_catalog_service.seed_ticket_catalog(session)

    yield session

    session.close()
    Base.metadata.drop_all(test_engine)


@pytest.fixture(scope="function")
def workspace(db: Session) -> Workspace:
    ws = Workspace(id=uuid.uuid4(), name="Support")
    db.add(ws)
    db.commit()
    return ws


@pytest.fixture(scope="function")
def other_workspace(db: Session) -> Workspace:
    ws = Workspace(id=uuid.uuid4(), name="Elsewhere")
    db.add(ws)
    db.commit()
    return ws


@pytest.fixture(scope="function")
def test_user(db: Session, workspace: Workspace) -> User:
    """Create a test user with membership in the workspace."""
    user = User(
        id=uuid.uuid4(),
        email=f"test-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Test User",
    )
    db.add(user)
    db.flush()
    db.add(WorkspaceMember(workspace_id=workspace.id, user_id=user.id))
    db.commit()
    return user


@pytest.fixture(scope="function")
def outsider(db: Session) -> User:
    """A user with no workspace membership."""
    user = User(
        id=uuid.uuid4(),
        email=f"outsider-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Outsider",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def agent(db: Session, workspace: Workspace) -> Agent:
    row = Agent(workspace_id=workspace.id, name="Triage bot")
    db.add(row)
    db.commit()
    return row


@pytest.fixture(scope="function")
def workflow(db: Session, workspace: Workspace) -> Workflow:
    row = Workflow(workspace_id=workspace.id, name="Escalation")
    db.add(row)
    db.commit()
    return row


@pytest.fixture(scope="function")
def jira_integration(db: Session, workspace: Workspace) -> Integration:
    integration = Integration(
        workspace_id=workspace.id,
        name="Jira",
        provider=ProviderType.JIRA.value,
        jira_type="cloud",
        url="https://acme.atlassian.net",
        username="bot@acme.test",
        api_key="jira-secret",
        filter_query="project = SUP",
        is_active=True,
        connected=True,
    )
    db.add(integration)
    db.commit()
    return integration


# =============================================================================
# Ticket helpers
# =============================================================================

def make_internal_ticket(
    db: Session,
    workspace: Workspace,
    title: str,
    *,
    priority_id: uuid.UUID | None = None,
    status_id: uuid.UUID | None = ticket_catalog_service.DEFAULT_STATUS_ID,
) -> Ticket:
    ticket = Ticket(
        workspace_id=workspace.id,
        title=title,
        description=f"{title} description",
        status_id=status_id,
        priority_id=priority_id,
        is_internal=True,
    )
    db.add(ticket)
    db.commit()
    return ticket


def make_external_ticket(
    integration_id: uuid.UUID,
    key: str,
    *,
    title: str | None = None,
    priority_name: str = "Medium",
    priority_value: int = 2,
    comments: list[ExternalComment] | None = None,
) -> ExternalTicket:
    return ExternalTicket(
        integration_id=integration_id,
        external_ticket_id=key,
        title=title or f"Issue {key}",
        description=f"Body of {key}",
        status_name="Open",
        status_color="bg-blue-100 text-blue-800",
        priority_name=priority_name,
        priority_color="bg-yellow-100 text-yellow-800",
        priority_value=priority_value,
        external_url=f"https://tracker.test/browse/{key}",
        comments=comments or [],
    )


@pytest.fixture
def internal_ticket_factory(db: Session, workspace: Workspace):
    def factory(title: str, **kwargs) -> Ticket:
        return make_internal_ticket(db, workspace, title, **kwargs)

    return factory


@pytest.fixture
def external_ticket_factory():
    return make_external_ticket


# =============================================================================
# Fake provider
# =============================================================================

class FakeTicketProvider(TicketProvider):
    """
    In-memory tracker.

    Tickets are paged by position; the continuation token is the next
    position as a string. Integrations listed in ``failing`` raise
    ProviderTransientError on every call.
    """

    def __init__(self):
        super().__init__()
        self.tickets: dict[str, list[ExternalTicket]] = {}
        self.failing: set[str] = set()
        self.calls: list[dict] = []
        self.posted_comments: list[dict] = []
        self.created_issues: list[dict] = []

    def add(self, integration_id, *tickets: ExternalTicket) -> None:
        self.tickets.setdefault(str(integration_id), []).extend(tickets)

    def normalize_external_id(self, raw_id: str) -> str:
        return raw_id.strip().lstrip("#")

    def _check(self, integration: Integration) -> str:
        integration_id = str(integration.id)
        if integration_id in self.failing:
            raise ProviderTransientError(f"tracker for {integration_id} is down")
        return integration_id

    async def fetch_tickets(
        self,
        integration,
        *,
        offset_hint: int = 0,
        max_results: int = 50,
        continuation_token: str | None = None,
    ) -> ProviderPage:
        self.calls.append(
            {
                "integration_id": str(integration.id),
                "max_results": max_results,
                "offset_hint": offset_hint,
                "token": continuation_token,
            }
        )
        integration_id = self._check(integration)
        available = self.tickets.get(integration_id, [])
        start = int(continuation_token or 0)
        chunk = available[start:start + max_results]
        end = start + len(chunk)
        is_last = end >= len(available)
        return ProviderPage(
            tickets=list(chunk),
            is_last=is_last,
            next_token=None if is_last else str(end),
        )

    async def get_ticket(self, integration, external_ticket_id: str):
        integration_id = self._check(integration)
        for ticket in self.tickets.get(integration_id, []):
            if ticket.external_ticket_id == external_ticket_id:
                return ticket
        return None

    async def add_comment(self, integration, external_ticket_id, content, author):
        self._check(integration)
        self.posted_comments.append(
            {"ticket": external_ticket_id, "content": content, "author": author}
        )
        return ExternalComment(
            id=f"c-{len(self.posted_comments)}",
            author=author,
            content=content,
            timestamp=datetime.now(timezone.utc),
        )

    async def create_issue(self, integration, summary, description, issue_type):
        integration_id = self._check(integration)
        number = len(self.created_issues) + 101
        self.created_issues.append(
            {"summary": summary, "description": description, "issue_type": issue_type}
        )
        self.add(
            integration.id,
            make_external_ticket(integration.id, str(number), title=summary),
        )
        return CreatedIssue(
            issue_key=f"#{number}",
            issue_url=f"https://tracker.test/issues/{number}",
            issue_id=f"{integration_id}-{number}",
        )


@pytest.fixture
def fake_provider(monkeypatch) -> FakeTicketProvider:
    """Replace the Jira adapter with an in-memory tracker."""
    provider = FakeTicketProvider()
    monkeypatch.setitem(ticket_providers._PROVIDERS, ProviderType.JIRA, provider)
    return provider


# =============================================================================
# Client Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    workspace: Workspace
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(test_user: User, workspace: Workspace) -> TestAuth:
    """Create JWT token for test user."""
    token = create_session_token(user_id=test_user.id, token_version=test_user.token_version)
    return TestAuth(user=test_user, workspace=workspace, token=token)


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(
    db: Session,
    test_auth: TestAuth
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create authenticated AsyncClient with JWT cookie and CSRF header.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()
