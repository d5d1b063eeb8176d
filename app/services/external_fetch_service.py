"""Fan-out of ticket fetches across a workspace's tracker integrations.

Slots are shared fairly between active providers. Providers that come up
short free their slots for a redistribution round, up to
MAX_REDISTRIBUTION_ROUNDS. A provider is exhausted once it reports its
last page or returns nothing; a failing provider is skipped for the page
but stays eligible for the next one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from app.db.models import Integration
from app.services.ticket_pagination import ExternalPaginationState
from app.services.ticket_providers import ExternalTicket, get_ticket_provider

logger = logging.getLogger(__name__)

MAX_REDISTRIBUTION_ROUNDS = 3


@dataclass
class ExternalFetchResult:
    tickets: list[ExternalTicket]
    has_more: bool
    state: ExternalPaginationState


@dataclass
class _RoundOutcome:
    integration_id: str
    fetched: int = 0
    failed: bool = False
    tickets: list[ExternalTicket] = field(default_factory=list)


def distribute_slots(provider_ids: list[str], slots: int) -> dict[str, int]:
    """Split slots so allocations differ by at most one; earlier providers get the remainder."""
    if not provider_ids or slots <= 0:
        return {provider_id: 0 for provider_id in provider_ids}
    base, remainder = divmod(slots, len(provider_ids))
    return {
        provider_id: base + (1 if index < remainder else 0)
        for index, provider_id in enumerate(provider_ids)
    }


async def _fetch_from_provider(
    integration: Integration,
    allocation: int,
    state: ExternalPaginationState,
) -> _RoundOutcome:
    integration_id = str(integration.id)
    outcome = _RoundOutcome(integration_id=integration_id)
    offset_hint = state.provider_fetched.get(integration_id, 0)

    provider = get_ticket_provider(integration.provider)
    if provider is None:
        logger.warning(
            "No ticket provider for integration %s (provider=%s)",
            integration_id,
            integration.provider,
        )
        return outcome

    try:
        page = await provider.fetch_tickets(
            integration,
            offset_hint=offset_hint,
            max_results=allocation,
            continuation_token=state.provider_tokens.get(integration_id),
        )
    except Exception:
        logger.exception(
            "Ticket fetch failed for integration %s; skipping for this page",
            integration_id,
        )
        outcome.failed = True
        return outcome

    # Committed as soon as this provider completes
    outcome.tickets = list(page.tickets)
    outcome.fetched = len(outcome.tickets)
    state.provider_tokens[integration_id] = page.next_token
    state.provider_fetched[integration_id] = offset_hint + outcome.fetched
    state.total_external_fetched += outcome.fetched
    if page.is_last or outcome.fetched == 0:
        state.exhausted_provider_ids.add(integration_id)
    return outcome


async def fetch_external_tickets(
    integrations: list[Integration],
    target: int,
    state: ExternalPaginationState | None = None,
) -> ExternalFetchResult:
    """Collect up to ``target`` tickets from the given tracker integrations.

    The returned state carries continuation tokens and exhaustion for the
    next page. Tickets are grouped by provider in integration order, each
    provider's tickets in the order it returned them.
    """
    state = state or ExternalPaginationState()
    known_ids = [str(integration.id) for integration in integrations]
    by_provider: dict[str, list[ExternalTicket]] = {
        integration_id: [] for integration_id in known_ids
    }
    accumulated = 0

    for round_number in range(1, MAX_REDISTRIBUTION_ROUNDS + 1):
        remaining = target - accumulated
        if remaining <= 0:
            break
        active = [
            integration
            for integration in integrations
            if str(integration.id) not in state.exhausted_provider_ids
        ]
        if not active:
            break

        allocations = distribute_slots([str(i.id) for i in active], remaining)
        calls = [
            _fetch_from_provider(integration, allocations[str(integration.id)], state)
            for integration in active
            if allocations[str(integration.id)] > 0
        ]
        outcomes = await asyncio.gather(*calls)

        round_total = 0
        for outcome in outcomes:
            by_provider[outcome.integration_id].extend(outcome.tickets)
            round_total += outcome.fetched
        accumulated += round_total

        logger.debug(
            "External fetch round %s: %s providers, %s tickets (%s/%s)",
            round_number,
            len(outcomes),
            round_total,
            accumulated,
            target,
        )
        if round_total == 0:
            break

    tickets = [ticket for integration_id in known_ids for ticket in by_provider[integration_id]]
    all_exhausted = all(integration_id in state.exhausted_provider_ids for integration_id in known_ids)
    has_more = accumulated >= target and not all_exhausted
    return ExternalFetchResult(tickets=tickets, has_more=has_more, state=state)
