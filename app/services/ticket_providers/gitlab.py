"""GitLab Issues provider (gitlab.com or self-hosted).

Issues are listed in fixed-size pages; the continuation token is the
absolute offset into the listing.
"""

from __future__ import annotations

import logging
from urllib.parse import quote, urlparse

from app.db.models import Integration
from app.services.ticket_errors import InvalidTicketArgumentError, ProviderTransientError
from app.services.ticket_providers.base import (
    LISTING_PAGE_SIZE,
    CreatedIssue,
    ExternalComment,
    ExternalTicket,
    ListingPage,
    ProviderPage,
    TicketProvider,
    issue_state_color,
    label_priority_color,
    label_priority_value,
    parse_offset_token,
    parse_timestamp,
    priority_label,
    read_listing_window,
    require_api_key,
)

logger = logging.getLogger(__name__)


def _project(integration: Integration) -> tuple[str, str]:
    """Return (api base url, url-encoded project path) from the integration URL."""
    if not integration.url:
        raise ProviderTransientError(
            "GitLab integration URL is required. Expected format: https://gitlab.com/{namespace}/{project}"
        )
    parsed = urlparse(integration.url)
    project_path = parsed.path.strip("/")
    if not parsed.netloc or "/" not in project_path:
        raise ProviderTransientError(
            "Invalid GitLab URL format. Expected: https://gitlab.com/{namespace}/{project}"
        )
    if project_path.endswith(".git"):
        project_path = project_path[:-4]
    return f"{parsed.scheme or 'https'}://{parsed.netloc}", quote(project_path, safe="")


class GitLabTicketProvider(TicketProvider):
    """GitLab REST v4 project issues; external ids are issue iids."""

    def _headers(self, integration: Integration) -> dict[str, str]:
        return {"PRIVATE-TOKEN": require_api_key(integration)}

    def normalize_external_id(self, raw_id: str) -> str:
        return raw_id.strip().lstrip("#")

    async def fetch_tickets(
        self,
        integration: Integration,
        *,
        offset_hint: int = 0,
        max_results: int = 50,
        continuation_token: str | None = None,
    ) -> ProviderPage:
        base_url, project = _project(integration)
        offset = parse_offset_token(continuation_token, offset_hint)

        async with self._client(base_url, self._headers(integration)) as client:

            async def fetch_page(page: int) -> ListingPage:
                response = await self._send(
                    lambda: client.get(
                        f"/api/v4/projects/{project}/issues",
                        params={
                            "state": "all",
                            "page": page,
                            "per_page": LISTING_PAGE_SIZE,
                            "order_by": "updated_at",
                            "sort": "desc",
                        },
                    ),
                    integration=integration,
                    action="GitLab issue listing",
                )
                items = self._json(
                    response, integration=integration, action="GitLab issue listing", expected=list
                )
                next_page = response.headers.get("X-Next-Page")
                if next_page is None:
                    has_next = len(items) >= LISTING_PAGE_SIZE
                else:
                    has_next = bool(next_page.strip())
                return ListingPage(items=items, has_next=has_next)

            issues, next_offset, is_last = await read_listing_window(
                fetch_page, offset=offset, max_results=max_results
            )
            tickets = [
                await self._map_issue(client, integration, project, issue)
                for issue in issues
            ]

        logger.info("Fetched %s tickets from GitLab", len(tickets))
        return ProviderPage(
            tickets=tickets,
            is_last=is_last,
            next_token=None if is_last else str(next_offset),
        )

    async def get_ticket(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        iid = self.normalize_external_id(external_ticket_id)
        if not iid.isdigit():
            return None
        base_url, project = _project(integration)
        async with self._client(base_url, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.get(f"/api/v4/projects/{project}/issues/{iid}"),
                integration=integration,
                action="GitLab issue lookup",
                allow_not_found=True,
            )
            if response is None:
                return None
            return await self._map_issue(
                client,
                integration,
                project,
                self._json(response, integration=integration, action="GitLab issue lookup"),
            )

    async def add_comment(
        self,
        integration: Integration,
        external_ticket_id: str,
        content: str,
        author: str,
    ) -> ExternalComment:
        iid = self.normalize_external_id(external_ticket_id)
        if not iid.isdigit():
            raise InvalidTicketArgumentError(
                f"Invalid GitLab issue number: {external_ticket_id}"
            )
        base_url, project = _project(integration)
        async with self._client(base_url, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.post(
                    f"/api/v4/projects/{project}/issues/{iid}/notes",
                    json={"body": content},
                ),
                integration=integration,
                action="GitLab note creation",
            )
        data = self._json(response, integration=integration, action="GitLab note creation")
        return ExternalComment(
            id=str(data.get("id")),
            author=(data.get("author") or {}).get("username") or author,
            content=data.get("body") or content,
            timestamp=parse_timestamp(data.get("created_at")),
        )

    async def create_issue(
        self,
        integration: Integration,
        summary: str,
        description: str,
        issue_type: str,
    ) -> CreatedIssue:
        payload: dict = {"title": summary, "description": description}
        if issue_type and issue_type.lower() != "task":
            payload["labels"] = issue_type.lower()
        base_url, project = _project(integration)
        async with self._client(base_url, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.post(f"/api/v4/projects/{project}/issues", json=payload),
                integration=integration,
                action="GitLab issue creation",
            )
        data = self._json(response, integration=integration, action="GitLab issue creation")
        return CreatedIssue(
            issue_key=f"#{data['iid']}",
            issue_url=data.get("web_url") or "",
            issue_id=str(data["iid"]),
        )

    async def _map_issue(self, client, integration: Integration, project: str, issue: dict) -> ExternalTicket:
        comments: list[ExternalComment] = []
        if issue.get("user_notes_count", 1):
            response = await self._send(
                lambda: client.get(
                    f"/api/v4/projects/{project}/issues/{issue['iid']}/notes",
                    params={"per_page": 100, "sort": "asc"},
                ),
                integration=integration,
                action="GitLab note listing",
            )
            comments = [
                ExternalComment(
                    id=str(note.get("id")),
                    author=(note.get("author") or {}).get("username") or "Unknown",
                    content=note.get("body") or "",
                    timestamp=parse_timestamp(note.get("updated_at")),
                )
                for note in self._json(
                    response, integration=integration, action="GitLab note listing", expected=list
                )
                if not note.get("system")
            ]

        priority_name = priority_label([str(label) for label in issue.get("labels") or []])
        state = issue.get("state") or "opened"
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=str(issue["iid"]),
            title=issue.get("title") or "Untitled",
            description=issue.get("description") or "",
            status_name=state,
            status_color=issue_state_color(state),
            priority_name=priority_name,
            priority_color=label_priority_color(priority_name),
            priority_value=label_priority_value(priority_name),
            external_url=issue.get("web_url") or "",
            comments=comments,
        )
