"""Tests for hybrid ticket listing and single-ticket lookup."""

import base64
import json
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.core.config import settings
from app.db.enums import ProviderType, TicketPhase
from app.db.models import Integration, Ticket, TicketComment, TicketStatus
from app.services import (
    sentiment_service,
    summarization_service,
    ticket_catalog_service,
    ticket_providers,
    ticket_query_service,
)
from app.services.ticket_errors import (
    IntegrationNotFoundError,
    SummarizationError,
    TicketNotFoundError,
    WorkspaceAccessDeniedError,
)
from app.services.ticket_pagination import decode_page_token
from app.services.ticket_providers import ExternalComment
from app.services.ticket_providers.jira import JiraTicketProvider

LOW, MEDIUM, HIGH, CRITICAL = (row[0] for row in ticket_catalog_service.SEED_PRIORITIES)


@pytest.fixture
def small_pages(monkeypatch):
    monkeypatch.setattr(settings, "TICKET_PAGE_SIZE_MIN", 1)


# =============================================================================
# Listing
# =============================================================================

@pytest.mark.asyncio
async def test_internal_then_external_across_two_pages(
    db, workspace, test_user, jira_integration, fake_provider,
    internal_ticket_factory, external_ticket_factory, small_pages,
):
    internal_ticket_factory("Printer on fire", priority_id=CRITICAL)
    internal_ticket_factory("Password reset", priority_id=LOW)
    fake_provider.add(
        jira_integration.id,
        *[external_ticket_factory(jira_integration.id, f"SUP-{n}") for n in (1, 2, 3)],
    )

    first = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=4
    )

    assert [item.title for item in first.items[:2]] == ["Printer on fire", "Password reset"]
    assert [item.internal for item in first.items] == [True, True, False, False]
    assert [item.external_ticket_id for item in first.items[2:]] == ["SUP-1", "SUP-2"]
    assert first.is_last is False
    assert first.total_count == 4

    state = decode_page_token(first.next_page_token)
    assert state.phase == TicketPhase.EXTERNAL
    assert state.internal_offset == 2
    assert state.external_state.provider_tokens == {str(jira_integration.id): "2"}
    assert state.external_state.total_external_fetched == 2

    second = await ticket_query_service.list_tickets(
        db,
        workspace_id=workspace.id,
        user_id=test_user.id,
        page_token=first.next_page_token,
        page_size=4,
    )

    assert [item.external_ticket_id for item in second.items] == ["SUP-3"]
    assert second.is_last is True
    assert second.next_page_token is None


@pytest.mark.asyncio
async def test_full_internal_page_stays_in_internal_phase(
    db, workspace, test_user, jira_integration, fake_provider,
    internal_ticket_factory, external_ticket_factory, small_pages,
):
    for n in range(3):
        internal_ticket_factory(f"Internal {n}", priority_id=MEDIUM)
    fake_provider.add(jira_integration.id, external_ticket_factory(jira_integration.id, "SUP-1"))

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=2
    )

    assert all(item.internal for item in page.items)
    assert fake_provider.calls == []
    state = decode_page_token(page.next_page_token)
    assert state.phase == TicketPhase.INTERNAL
    assert state.internal_offset == 2


@pytest.mark.asyncio
async def test_internal_only_workspace_ends_when_rows_run_out(
    db, workspace, test_user, internal_ticket_factory, small_pages,
):
    internal_ticket_factory("Only one")

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    assert len(page.items) == 1
    assert page.is_last is True
    assert page.next_page_token is None


@pytest.mark.asyncio
async def test_internal_order_priority_then_recency(
    db, workspace, test_user, internal_ticket_factory, small_pages,
):
    old_high = internal_ticket_factory("Old high", priority_id=HIGH)
    new_high = internal_ticket_factory("New high", priority_id=HIGH)
    internal_ticket_factory("No priority", priority_id=None)
    internal_ticket_factory("Critical", priority_id=CRITICAL)
    old_high.updated_at = datetime.now(timezone.utc) - timedelta(days=2)
    new_high.updated_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.commit()

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=10
    )

    assert [item.title for item in page.items] == ["Critical", "New high", "Old high", "No priority"]


@pytest.mark.asyncio
async def test_materialized_rows_are_not_listed_as_internal(
    db, workspace, test_user, jira_integration, fake_provider,
    internal_ticket_factory, external_ticket_factory, small_pages,
):
    internal_ticket_factory("Local")
    db.add(
        Ticket(
            workspace_id=workspace.id,
            title="Materialized",
            integration_id=jira_integration.id,
            external_ticket_id="SUP-9",
            is_internal=False,
        )
    )
    db.commit()
    fake_provider.add(jira_integration.id, external_ticket_factory(jira_integration.id, "SUP-9"))

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=10
    )

    ids = [item.id for item in page.items]
    assert len(ids) == 2
    assert ids[1] == f"{jira_integration.id}:SUP-9"


@pytest.mark.asyncio
async def test_duplicate_external_tickets_are_dropped(
    db, workspace, test_user, jira_integration, fake_provider, external_ticket_factory, small_pages,
):
    ticket = external_ticket_factory(jira_integration.id, "SUP-1")
    fake_provider.add(jira_integration.id, ticket, ticket)

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    assert [item.id for item in page.items] == [f"{jira_integration.id}:SUP-1"]
    assert page.total_count == 1


@pytest.mark.asyncio
async def test_inactive_integrations_are_ignored(
    db, workspace, test_user, jira_integration, fake_provider, external_ticket_factory, small_pages,
):
    jira_integration.is_active = False
    db.commit()
    fake_provider.add(jira_integration.id, external_ticket_factory(jira_integration.id, "SUP-1"))

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    assert page.items == []
    assert page.is_last is True
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_garbage_token_restarts_from_first_page(
    db, workspace, test_user, internal_ticket_factory, small_pages,
):
    internal_ticket_factory("First")

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_token="!!garbage!!", page_size=5
    )

    assert [item.title for item in page.items] == ["First"]


@pytest.mark.asyncio
async def test_out_of_range_offset_token_restarts_from_first_page(
    db, workspace, test_user, internal_ticket_factory, small_pages,
):
    internal_ticket_factory("First")
    token = base64.urlsafe_b64encode(
        json.dumps({"phase": "internal", "internalOffset": 10**23}).encode()
    ).decode()

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_token=token, page_size=5
    )

    assert [item.title for item in page.items] == ["First"]
    assert page.is_last is True


@pytest.mark.asyncio
async def test_listing_requires_membership(db, workspace, outsider):
    with pytest.raises(WorkspaceAccessDeniedError):
        await ticket_query_service.list_tickets(db, workspace_id=workspace.id, user_id=outsider.id)


# =============================================================================
# Overlay
# =============================================================================

@pytest.mark.asyncio
async def test_local_override_wins_over_tracker_values(
    db, workspace, test_user, agent, jira_integration, fake_provider, external_ticket_factory,
):
    in_review = TicketStatus(name="In Review", color="bg-pink-500/20 text-pink-400")
    db.add(in_review)
    db.flush()
    db.add(
        Ticket(
            workspace_id=workspace.id,
            title="Materialized",
            status_id=in_review.id,
            priority_id=CRITICAL,
            integration_id=jira_integration.id,
            external_ticket_id="SUP-1",
            assigned_agent_id=agent.id,
            is_internal=False,
        )
    )
    db.commit()
    fake_provider.add(jira_integration.id, external_ticket_factory(jira_integration.id, "SUP-1"))

    view = await ticket_query_service.get_ticket_by_id(
        db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=test_user.id
    )

    assert view.status.name == "In Review"
    assert view.priority.name == "Critical"
    assert view.assigned_agent_id == agent.id
    assert view.internal is False
    assert view.source == "JIRA"
    assert view.title == "Issue SUP-1"


@pytest.mark.asyncio
async def test_comments_merged_newest_first(
    db, workspace, test_user, jira_integration, fake_provider, external_ticket_factory,
):
    now = datetime.now(timezone.utc)
    row = Ticket(
        workspace_id=workspace.id,
        title="Materialized",
        integration_id=jira_integration.id,
        external_ticket_id="SUP-1",
        is_internal=False,
    )
    db.add(row)
    db.flush()
    db.add(
        TicketComment(
            ticket_id=row.id, author="Local", content="local note",
            created_at=now - timedelta(hours=1),
        )
    )
    db.commit()
    fake_provider.add(
        jira_integration.id,
        external_ticket_factory(
            jira_integration.id,
            "SUP-1",
            comments=[
                ExternalComment(id="1", author="A", content="oldest", timestamp=now - timedelta(days=1)),
                ExternalComment(id="2", author="B", content="newest", timestamp=now),
                ExternalComment(id="3", author="C", content="undated", timestamp=None),
            ],
        ),
    )

    view = await ticket_query_service.get_ticket_by_id(
        db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=test_user.id
    )

    assert [c.content for c in view.comments] == ["newest", "local note", "oldest", "undated"]


# =============================================================================
# Single ticket
# =============================================================================

@pytest.mark.asyncio
async def test_get_internal_ticket_by_guid(db, test_user, internal_ticket_factory):
    ticket = internal_ticket_factory("Local", priority_id=HIGH)

    view = await ticket_query_service.get_ticket_by_id(
        db, ticket_id=str(ticket.id), user_id=test_user.id
    )

    assert view.id == str(ticket.id)
    assert view.internal is True
    assert view.source == "INTERNAL"
    assert view.priority.value == 3
    assert view.satisfaction == 100


@pytest.mark.asyncio
async def test_materialized_guid_resolves_to_composite_view(
    db, workspace, test_user, jira_integration, fake_provider, external_ticket_factory,
):
    row = Ticket(
        workspace_id=workspace.id,
        title="Stale local title",
        integration_id=jira_integration.id,
        external_ticket_id="SUP-7",
        is_internal=False,
    )
    db.add(row)
    db.commit()
    fake_provider.add(
        jira_integration.id,
        external_ticket_factory(jira_integration.id, "SUP-7", title="Tracker title"),
    )

    view = await ticket_query_service.get_ticket_by_id(
        db, ticket_id=str(row.id), user_id=test_user.id
    )

    assert view.id == f"{jira_integration.id}:SUP-7"
    assert view.title == "Tracker title"


@pytest.mark.asyncio
async def test_unknown_guid_is_not_found(db, test_user):
    with pytest.raises(TicketNotFoundError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=str(uuid.uuid4()), user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_unknown_integration_is_not_found(db, test_user):
    with pytest.raises(IntegrationNotFoundError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=f"{uuid.uuid4()}:SUP-1", user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_unknown_external_ticket_is_not_found(db, test_user, jira_integration, fake_provider):
    with pytest.raises(TicketNotFoundError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=f"{jira_integration.id}:SUP-404", user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_tracker_failure_on_lookup_is_not_found(
    db, test_user, jira_integration, fake_provider,
):
    fake_provider.failing.add(str(jira_integration.id))

    with pytest.raises(TicketNotFoundError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_unreadable_tracker_response_on_lookup_is_not_found(
    monkeypatch, db, test_user, jira_integration,
):
    monkeypatch.setattr(settings, "PROVIDER_MAX_ATTEMPTS", 1)
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    monkeypatch.setitem(
        ticket_providers._PROVIDERS, ProviderType.JIRA, JiraTicketProvider(transport=transport)
    )

    with pytest.raises(TicketNotFoundError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_external_lookup_checks_membership(
    db, outsider, jira_integration, fake_provider, external_ticket_factory,
):
    fake_provider.add(jira_integration.id, external_ticket_factory(jira_integration.id, "SUP-1"))

    with pytest.raises(WorkspaceAccessDeniedError):
        await ticket_query_service.get_ticket_by_id(
            db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=outsider.id
        )


# =============================================================================
# Satisfaction
# =============================================================================

def _commented(external_ticket_factory, integration: Integration, key: str):
    return external_ticket_factory(
        integration.id,
        key,
        comments=[ExternalComment(id="1", author="Customer", content="Still broken!")],
    )


@pytest.mark.asyncio
async def test_satisfaction_scores_commented_external_tickets(
    monkeypatch, db, workspace, test_user, jira_integration, fake_provider,
    internal_ticket_factory, external_ticket_factory, small_pages,
):
    monkeypatch.setattr(settings, "SENTIMENT_API_KEY", "test-key")
    internal_ticket_factory("Local")
    fake_provider.add(
        jira_integration.id,
        _commented(external_ticket_factory, jira_integration, "SUP-1"),
        external_ticket_factory(jira_integration.id, "SUP-2"),
    )
    seen = []

    async def fake_analyze(requests, **kwargs):
        seen.extend(requests)
        return [sentiment_service.SentimentResult(ticket_id=r.ticket_id, sentiment=12) for r in requests]

    monkeypatch.setattr(sentiment_service, "analyze_batch", fake_analyze)

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    scores = {item.title: item.satisfaction for item in page.items}
    assert scores == {"Local": 100, "Issue SUP-1": 12, "Issue SUP-2": 100}
    assert [r.ticket_id for r in seen] == [f"{jira_integration.id}:SUP-1"]
    assert seen[0].comments == ["Still broken!"]


@pytest.mark.asyncio
async def test_satisfaction_falls_back_when_scorer_fails(
    monkeypatch, db, workspace, test_user, jira_integration, fake_provider,
    external_ticket_factory, small_pages,
):
    monkeypatch.setattr(settings, "SENTIMENT_API_KEY", "test-key")
    fake_provider.add(jira_integration.id, _commented(external_ticket_factory, jira_integration, "SUP-1"))

    async def broken(requests, **kwargs):
        raise sentiment_service.SentimentAnalysisError("scorer down")

    monkeypatch.setattr(sentiment_service, "analyze_batch", broken)

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    assert [item.satisfaction for item in page.items] == [100]


@pytest.mark.asyncio
async def test_satisfaction_skips_scorer_when_not_configured(
    monkeypatch, db, workspace, test_user, jira_integration, fake_provider,
    external_ticket_factory, small_pages,
):
    fake_provider.add(jira_integration.id, _commented(external_ticket_factory, jira_integration, "SUP-1"))

    async def must_not_run(requests, **kwargs):
        raise AssertionError("scorer called without configuration")

    monkeypatch.setattr(sentiment_service, "analyze_batch", must_not_run)

    page = await ticket_query_service.list_tickets(
        db, workspace_id=workspace.id, user_id=test_user.id, page_size=5
    )

    assert [item.satisfaction for item in page.items] == [100]


# =============================================================================
# Summaries
# =============================================================================

@pytest.mark.asyncio
async def test_summarize_returns_view_with_summary(
    monkeypatch, db, test_user, jira_integration, fake_provider, external_ticket_factory,
):
    fake_provider.add(jira_integration.id, _commented(external_ticket_factory, jira_integration, "SUP-1"))
    prompts = []

    async def summarize(content, **kwargs):
        prompts.append(content)
        return "Customer reports the issue persists."

    monkeypatch.setattr(summarization_service, "generate_summary", summarize)

    view = await ticket_query_service.summarize_ticket(
        db, ticket_id=f"{jira_integration.id}:SUP-1", user_id=test_user.id
    )

    assert view.id == f"{jira_integration.id}:SUP-1"
    assert view.summary == "Customer reports the issue persists."
    assert "Title: Issue SUP-1" in prompts[0]
    assert "- Customer: Still broken!" in prompts[0]


@pytest.mark.asyncio
async def test_summarize_failure_propagates(monkeypatch, db, test_user, internal_ticket_factory):
    ticket = internal_ticket_factory("Local")

    async def broken(content, **kwargs):
        raise SummarizationError("model unavailable")

    monkeypatch.setattr(summarization_service, "generate_summary", broken)

    with pytest.raises(SummarizationError):
        await ticket_query_service.summarize_ticket(
            db, ticket_id=str(ticket.id), user_id=test_user.id
        )


@pytest.mark.asyncio
async def test_summarize_checks_membership(db, outsider, internal_ticket_factory):
    ticket = internal_ticket_factory("Private")

    with pytest.raises(WorkspaceAccessDeniedError):
        await ticket_query_service.summarize_ticket(
            db, ticket_id=str(ticket.id), user_id=outsider.id
        )
