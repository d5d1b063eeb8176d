"""GitHub Issues provider.

Issues are listed in fixed-size pages; the continuation token is the
absolute offset into the listing. Pull requests returned by the issues
endpoint are skipped but still advance the offset.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

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

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


def _repository(integration: Integration) -> str:
    """Resolve ``owner/repo`` from the integration URL (https://github.com/owner/repo)."""
    if not integration.url:
        raise ProviderTransientError(
            "GitHub integration URL is required. Expected format: https://github.com/{owner}/{repo}"
        )
    segments = [s for s in urlparse(integration.url).path.split("/") if s]
    if len(segments) < 2:
        raise ProviderTransientError(
            "Invalid GitHub repository URL format. Expected: https://github.com/{owner}/{repo}"
        )
    repo = segments[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    return f"{segments[0]}/{repo}"


def _has_next_page(link_header: str | None) -> bool:
    return bool(link_header) and 'rel="next"' in link_header


class GitHubTicketProvider(TicketProvider):
    """GitHub REST v3 issues."""

    def _headers(self, integration: Integration) -> dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "ticket-hub",
            "Authorization": f"Bearer {require_api_key(integration)}",
        }

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
        repo = _repository(integration)
        offset = parse_offset_token(continuation_token, offset_hint)

        async with self._client(GITHUB_API_URL, self._headers(integration)) as client:

            async def fetch_page(page: int) -> ListingPage:
                response = await self._send(
                    lambda: client.get(
                        f"/repos/{repo}/issues",
                        params={
                            "state": "all",
                            "page": page,
                            "per_page": LISTING_PAGE_SIZE,
                            "sort": "updated",
                            "direction": "desc",
                        },
                    ),
                    integration=integration,
                    action="GitHub issue listing",
                )
                return ListingPage(
                    items=self._json(
                        response, integration=integration, action="GitHub issue listing", expected=list
                    ),
                    has_next=_has_next_page(response.headers.get("Link")),
                )

            issues, next_offset, is_last = await read_listing_window(
                fetch_page,
                offset=offset,
                max_results=max_results,
                keep=lambda item: "pull_request" not in item,
            )
            tickets = [
                await self._map_issue(client, integration, repo, issue)
                for issue in issues
            ]

        logger.info("Fetched %s tickets from GitHub repository %s", len(tickets), repo)
        return ProviderPage(
            tickets=tickets,
            is_last=is_last,
            next_token=None if is_last else str(next_offset),
        )

    async def get_ticket(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        number = self.normalize_external_id(external_ticket_id)
        if not number.isdigit():
            return None
        repo = _repository(integration)
        async with self._client(GITHUB_API_URL, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.get(f"/repos/{repo}/issues/{number}"),
                integration=integration,
                action="GitHub issue lookup",
                allow_not_found=True,
            )
            if response is None:
                return None
            return await self._map_issue(
                client,
                integration,
                repo,
                self._json(response, integration=integration, action="GitHub issue lookup"),
            )

    async def add_comment(
        self,
        integration: Integration,
        external_ticket_id: str,
        content: str,
        author: str,
    ) -> ExternalComment:
        number = self.normalize_external_id(external_ticket_id)
        if not number.isdigit():
            raise InvalidTicketArgumentError(f"Invalid issue number: {external_ticket_id}")
        repo = _repository(integration)
        async with self._client(GITHUB_API_URL, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.post(
                    f"/repos/{repo}/issues/{number}/comments", json={"body": content}
                ),
                integration=integration,
                action="GitHub comment creation",
            )
        data = self._json(response, integration=integration, action="GitHub comment creation")
        return ExternalComment(
            id=str(data.get("id")),
            author=(data.get("user") or {}).get("login") or author,
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
        labels = []
        if issue_type and issue_type.lower() != "task":
            labels.append(issue_type.lower())
        repo = _repository(integration)
        async with self._client(GITHUB_API_URL, self._headers(integration)) as client:
            response = await self._send(
                lambda: client.post(
                    f"/repos/{repo}/issues",
                    json={"title": summary, "body": description, "labels": labels},
                ),
                integration=integration,
                action="GitHub issue creation",
            )
        data = self._json(response, integration=integration, action="GitHub issue creation")
        return CreatedIssue(
            issue_key=f"#{data['number']}",
            issue_url=data.get("html_url") or "",
            issue_id=str(data["number"]),
        )

    async def _map_issue(self, client, integration: Integration, repo: str, issue: dict) -> ExternalTicket:
        comments: list[ExternalComment] = []
        if issue.get("comments"):
            response = await self._send(
                lambda: client.get(
                    f"/repos/{repo}/issues/{issue['number']}/comments",
                    params={"per_page": 100},
                ),
                integration=integration,
                action="GitHub comment listing",
            )
            comments = [
                ExternalComment(
                    id=str(item.get("id")),
                    author=(item.get("user") or {}).get("login") or "Unknown",
                    content=item.get("body") or "",
                    timestamp=parse_timestamp(item.get("updated_at")),
                )
                for item in self._json(
                    response, integration=integration, action="GitHub comment listing", expected=list
                )
            ]

        label_names = [
            label["name"] if isinstance(label, dict) else str(label)
            for label in issue.get("labels") or []
        ]
        priority_name = priority_label(label_names)
        state = issue.get("state") or "open"
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=str(issue["number"]),
            title=issue.get("title") or "Untitled",
            description=issue.get("body") or "",
            status_name=state,
            status_color=issue_state_color(state),
            priority_name=priority_name,
            priority_color=label_priority_color(priority_name),
            priority_value=label_priority_value(priority_name),
            external_url=issue.get("html_url") or "",
            comments=comments,
        )
