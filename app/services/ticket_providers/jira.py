"""Jira provider (Cloud REST v3 and Server/Data Center REST v2).

Cloud search pages with ``nextPageToken``; on-premise search pages with
``startAt`` and the continuation token carries the next start index.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

from app.db.enums import JiraType
from app.db.models import Integration
from app.services.ticket_errors import InvalidTicketArgumentError, ProviderTransientError
from app.services.ticket_providers.base import (
    CreatedIssue,
    ExternalComment,
    ExternalTicket,
    ProviderPage,
    TicketProvider,
    parse_timestamp,
    require_api_key,
)

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "key,status,priority,summary,description,comment,created,updated"
JQL_ORDER_BY = "ORDER BY priority DESC, updated DESC"

_PRIORITY_VALUES = {
    "highest": 4,
    "critical": 4,
    "blocker": 4,
    "high": 3,
    "medium": 2,
    "normal": 2,
    "low": 1,
    "lowest": 1,
    "trivial": 1,
}


def build_jql(filter_query: str | None) -> str:
    if filter_query and filter_query.strip():
        return f"{filter_query.strip()} {JQL_ORDER_BY}"
    return JQL_ORDER_BY


def map_priority_value(priority_name: str) -> int:
    return _PRIORITY_VALUES.get(priority_name.lower(), 2)


def status_color(status_name: str) -> str:
    lowered = status_name.lower()
    if "done" in lowered or "complete" in lowered or "closed" in lowered:
        return "bg-emerald-500/20 text-emerald-400"
    if "progress" in lowered or "review" in lowered:
        return "bg-yellow-500/20 text-yellow-400"
    if "todo" in lowered or "to do" in lowered:
        return "bg-purple-500/20 text-purple-400"
    return "bg-blue-500/20 text-blue-400"


def priority_color(priority_name: str) -> str:
    lowered = priority_name.lower()
    if "highest" in lowered or "critical" in lowered or "blocker" in lowered:
        return "bg-red-500/10 text-red-400 border border-red-500/20"
    if "high" in lowered:
        return "bg-orange-500/10 text-orange-400 border border-orange-500/20"
    if "low" in lowered or "trivial" in lowered:
        return "bg-slate-500/10 text-slate-400 border border-slate-500/20"
    return "bg-blue-500/10 text-blue-400 border border-blue-500/20"


_BLOCK_NODES = {"paragraph", "heading", "blockquote", "codeBlock", "listItem", "rule"}


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format tree (or plain string) to text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(adf_to_text(child) for child in node)
    if not isinstance(node, dict):
        return str(node)

    node_type = node.get("type")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"
    if node_type == "mention":
        return (node.get("attrs") or {}).get("text", "")
    text = adf_to_text(node.get("content") or [])
    if node_type in _BLOCK_NODES:
        return text.rstrip("\n") + "\n"
    if node_type == "doc":
        return text.strip()
    return text


def text_to_adf(text: str) -> dict:
    """Wrap plain text into a minimal ADF document (one paragraph per line)."""
    paragraphs = []
    for line in (text or "").split("\n"):
        content = [{"type": "text", "text": line}] if line else []
        paragraphs.append({"type": "paragraph", "content": content})
    return {"type": "doc", "version": 1, "content": paragraphs}


class JiraTicketProvider(TicketProvider):
    """Jira issues, searched with the integration's JQL filter."""

    def _is_cloud(self, integration: Integration) -> bool:
        return (integration.jira_type or JiraType.CLOUD.value) == JiraType.CLOUD.value

    def _api_prefix(self, integration: Integration) -> str:
        return "/rest/api/3" if self._is_cloud(integration) else "/rest/api/2"

    def _headers(self, integration: Integration) -> dict[str, str]:
        api_key = require_api_key(integration)
        if integration.username:
            # Basic auth: email + API token
            raw = f"{integration.username}:{api_key}".encode()
            authorization = f"Basic {base64.b64encode(raw).decode()}"
        else:
            # Personal access token
            authorization = f"Bearer {api_key}"
        return {"Accept": "application/json", "Authorization": authorization}

    def _base_url(self, integration: Integration) -> str:
        if not integration.url:
            raise ProviderTransientError("Jira integration URL is required")
        return integration.url.rstrip("/")

    def _text_body(self, integration: Integration, text: str) -> Any:
        return text_to_adf(text) if self._is_cloud(integration) else text

    async def fetch_tickets(
        self,
        integration: Integration,
        *,
        offset_hint: int = 0,
        max_results: int = 50,
        continuation_token: str | None = None,
    ) -> ProviderPage:
        jql = build_jql(integration.filter_query)
        params: dict[str, Any] = {
            "jql": jql,
            "fields": SEARCH_FIELDS,
            "maxResults": max_results,
        }
        start_at = offset_hint
        if self._is_cloud(integration):
            path = "/rest/api/3/search/jql"
            if continuation_token:
                params["nextPageToken"] = continuation_token
        else:
            path = "/rest/api/2/search"
            if continuation_token and continuation_token.isdigit():
                start_at = int(continuation_token)
            params["startAt"] = start_at

        async with self._client(self._base_url(integration), self._headers(integration)) as client:
            response = await self._send(
                lambda: client.get(path, params=params),
                integration=integration,
                action="Jira search",
            )
        data = self._json(response, integration=integration, action="Jira search")
        issues = data.get("issues") or []
        tickets = [self._map_issue(integration, issue) for issue in issues]

        if self._is_cloud(integration):
            next_token = data.get("nextPageToken")
            is_last = bool(data.get("isLast", next_token is None))
        else:
            total = int(data.get("total") or 0)
            start = int(data.get("startAt", start_at) or 0)
            is_last = total == 0 or start + len(issues) >= total
            next_token = None if is_last else str(start + len(issues))

        logger.debug(
            "Fetched %s Jira tickets for integration %s (is_last=%s)",
            len(tickets),
            integration.id,
            is_last,
        )
        return ProviderPage(
            tickets=tickets,
            is_last=is_last,
            next_token=None if is_last else next_token,
        )

    async def get_ticket(
        self, integration: Integration, external_ticket_id: str
    ) -> ExternalTicket | None:
        key = self.normalize_external_id(external_ticket_id)
        prefix = self._api_prefix(integration)
        async with self._client(self._base_url(integration), self._headers(integration)) as client:
            response = await self._send(
                lambda: client.get(f"{prefix}/issue/{key}", params={"fields": SEARCH_FIELDS}),
                integration=integration,
                action="Jira issue lookup",
                allow_not_found=True,
            )
        if response is None:
            return None
        return self._map_issue(
            integration, self._json(response, integration=integration, action="Jira issue lookup")
        )

    async def add_comment(
        self,
        integration: Integration,
        external_ticket_id: str,
        content: str,
        author: str,
    ) -> ExternalComment:
        key = self.normalize_external_id(external_ticket_id)
        prefix = self._api_prefix(integration)
        body = {"body": self._text_body(integration, content)}
        async with self._client(self._base_url(integration), self._headers(integration)) as client:
            response = await self._send(
                lambda: client.post(f"{prefix}/issue/{key}/comment", json=body),
                integration=integration,
                action="Jira comment creation",
            )
        data = self._json(response, integration=integration, action="Jira comment creation")
        return ExternalComment(
            id=str(data.get("id") or ""),
            author=(data.get("author") or {}).get("displayName") or author,
            content=adf_to_text(data.get("body")) or content,
            timestamp=parse_timestamp(data.get("created")),
        )

    async def create_issue(
        self,
        integration: Integration,
        summary: str,
        description: str,
        issue_type: str,
    ) -> CreatedIssue:
        prefix = self._api_prefix(integration)
        base_url = self._base_url(integration)
        async with self._client(base_url, self._headers(integration)) as client:
            project_id = await self._resolve_project_id(client, integration)
            issue_type_id = await self._resolve_issue_type_id(client, integration, issue_type)
            payload = {
                "fields": {
                    "summary": summary,
                    "description": self._text_body(integration, description),
                    "issuetype": {"id": issue_type_id},
                    "project": {"id": project_id},
                }
            }
            response = await self._send(
                lambda: client.post(f"{prefix}/issue", json=payload),
                integration=integration,
                action="Jira issue creation",
            )
        data = self._json(response, integration=integration, action="Jira issue creation")
        key = data.get("key")
        if not key:
            raise ProviderTransientError("Failed to create Jira issue: no issue key returned")
        logger.info("Created Jira issue %s in integration %s", key, integration.id)
        return CreatedIssue(
            issue_key=key,
            issue_url=f"{base_url}/browse/{key}",
            issue_id=str(data.get("id") or key),
        )

    async def _resolve_project_id(self, client, integration: Integration) -> str:
        """Find the project the integration's JQL filter points at."""
        if self._is_cloud(integration):
            path = "/rest/api/3/search/jql"
        else:
            path = "/rest/api/2/search"
        response = await self._send(
            lambda: client.get(
                path,
                params={"jql": build_jql(integration.filter_query), "fields": "project", "maxResults": 1},
            ),
            integration=integration,
            action="Jira project lookup",
        )
        data = self._json(response, integration=integration, action="Jira project lookup")
        issues = data.get("issues") or []
        project_id = None
        if issues:
            project_id = ((issues[0].get("fields") or {}).get("project") or {}).get("id")
        if not project_id:
            raise InvalidTicketArgumentError(
                f"No project found in filter query results for integration {integration.id}"
            )
        return str(project_id)

    async def _resolve_issue_type_id(self, client, integration: Integration, issue_type: str) -> str:
        prefix = self._api_prefix(integration)
        response = await self._send(
            lambda: client.get(f"{prefix}/issuetype"),
            integration=integration,
            action="Jira issue type lookup",
        )
        issue_types = self._json(
            response, integration=integration, action="Jira issue type lookup", expected=list
        )
        for item in issue_types:
            if (item.get("name") or "").lower() == issue_type.lower():
                return str(item["id"])
        available = ", ".join(item.get("name") or "" for item in issue_types)
        raise InvalidTicketArgumentError(
            f"Issue type '{issue_type}' not found in Jira. Available types: {available}"
        )

    def _map_issue(self, integration: Integration, issue: dict) -> ExternalTicket:
        fields = issue.get("fields") or {}
        status_name = (fields.get("status") or {}).get("name") or "Unknown"
        priority_name = (fields.get("priority") or {}).get("name") or "Medium"
        key = issue.get("key") or "UNKNOWN"

        raw_comments = (fields.get("comment") or {}).get("comments") or []
        comments = [
            ExternalComment(
                id=str(comment.get("id") or ""),
                author=(comment.get("author") or {}).get("displayName") or "Unknown",
                content=adf_to_text(comment.get("body")),
                timestamp=parse_timestamp(comment.get("updated") or comment.get("created")),
            )
            for comment in raw_comments
        ]

        base_url = (integration.url or "").rstrip("/")
        return ExternalTicket(
            integration_id=integration.id,
            external_ticket_id=key,
            title=fields.get("summary") or "Untitled",
            description=adf_to_text(fields.get("description")),
            status_name=status_name,
            status_color=status_color(status_name),
            priority_name=priority_name,
            priority_color=priority_color(priority_name),
            priority_value=map_priority_value(priority_name),
            external_url=f"{base_url}/browse/{key}" if base_url else "",
            comments=comments,
        )
