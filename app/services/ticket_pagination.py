"""Opaque continuation tokens for the hybrid ticket list.

A token is URL-safe base64 over compact JSON. Decoding never fails: a
missing or unreadable token restarts at the first internal page.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.db.enums import TicketPhase

logger = logging.getLogger(__name__)

# Offsets and counts beyond this are rejected as forged
MAX_TOKEN_OFFSET = 2**31 - 1


def _read_count(payload: dict, key: str) -> int:
    value: Any = payload.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    if value < 0 or value > MAX_TOKEN_OFFSET:
        raise ValueError(f"{key} is out of range")
    return value


@dataclass
class ExternalPaginationState:
    """Per-provider continuation tokens plus exhaustion bookkeeping.

    ``provider_fetched`` counts the tickets each provider has returned so
    far and serves as that provider's offset hint.
    """

    provider_tokens: dict[str, str | None] = field(default_factory=dict)
    total_external_fetched: int = 0
    exhausted_provider_ids: set[str] = field(default_factory=set)
    provider_fetched: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "providerTokens": dict(self.provider_tokens),
            "totalExternalFetched": self.total_external_fetched,
            "exhaustedProviderIds": sorted(self.exhausted_provider_ids),
            "providerFetched": dict(self.provider_fetched),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ExternalPaginationState":
        tokens = payload.get("providerTokens") or {}
        if not isinstance(tokens, dict):
            raise ValueError("providerTokens must be an object")
        exhausted = payload.get("exhaustedProviderIds") or []
        if not isinstance(exhausted, list):
            raise ValueError("exhaustedProviderIds must be a list")
        fetched = payload.get("providerFetched") or {}
        if not isinstance(fetched, dict):
            raise ValueError("providerFetched must be an object")
        return cls(
            provider_tokens={
                str(key): (None if value is None else str(value))
                for key, value in tokens.items()
            },
            total_external_fetched=_read_count(payload, "totalExternalFetched"),
            exhausted_provider_ids={str(item) for item in exhausted},
            provider_fetched={
                str(key): _read_count(fetched, key) for key in fetched
            },
        )


@dataclass
class PaginationState:
    phase: TicketPhase = TicketPhase.INTERNAL
    internal_offset: int = 0
    external_state: ExternalPaginationState | None = None


def normalize_page_size(requested: int | None) -> int:
    """Clamp a requested page size; anything outside the bounds falls back to the minimum."""
    minimum = settings.TICKET_PAGE_SIZE_MIN
    maximum = settings.TICKET_PAGE_SIZE_MAX
    if requested is None or requested < minimum or requested > maximum:
        return minimum
    return requested


def encode_page_token(state: PaginationState) -> str:
    payload: dict = {
        "phase": state.phase.value,
        "internalOffset": state.internal_offset,
    }
    if state.external_state is not None:
        payload["externalState"] = state.external_state.to_dict()
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("utf-8")


def decode_page_token(token: str | None) -> PaginationState:
    if not token or not token.strip():
        return PaginationState()
    try:
        decoded = base64.urlsafe_b64decode(token.strip().encode("utf-8")).decode("utf-8")
        payload = json.loads(decoded)
        if not isinstance(payload, dict):
            raise ValueError("token payload must be an object")
        phase = TicketPhase(payload.get("phase", TicketPhase.INTERNAL.value))
        offset = _read_count(payload, "internalOffset")
        external_payload = payload.get("externalState")
        external_state = None
        if external_payload is not None:
            if not isinstance(external_payload, dict):
                raise ValueError("externalState must be an object")
            external_state = ExternalPaginationState.from_dict(external_payload)
    except (ValueError, TypeError, KeyError, OverflowError, RecursionError) as exc:
        logger.warning("Discarding unreadable page token: %s", exc)
        return PaginationState()
    return PaginationState(
        phase=phase, internal_offset=offset, external_state=external_state
    )


def next_page_token(state: PaginationState, *, is_last: bool) -> str | None:
    if is_last:
        return None
    return encode_page_token(state)
