"""Tests for ticket id parsing and composite ids."""

import uuid

import pytest

from app.services.ticket_errors import InvalidTicketIdError
from app.services.ticket_identity import (
    TicketIdKind,
    build_composite_id,
    is_composite_format,
    is_guid_format,
    parse_ticket_id,
)


def test_parse_guid_is_internal():
    ticket_id = uuid.uuid4()
    parsed = parse_ticket_id(str(ticket_id))

    assert parsed.kind == TicketIdKind.INTERNAL
    assert parsed.is_internal
    assert parsed.internal_id == ticket_id
    assert parsed.integration_id is None


def test_parse_composite_is_external():
    integration_id = uuid.uuid4()
    parsed = parse_ticket_id(f"{integration_id}:SUP-42")

    assert parsed.kind == TicketIdKind.EXTERNAL
    assert not parsed.is_internal
    assert parsed.integration_id == integration_id
    assert parsed.external_ticket_id == "SUP-42"


def test_external_part_keeps_extra_colons():
    integration_id = uuid.uuid4()
    parsed = parse_ticket_id(f"{integration_id}:group:project:7")

    assert parsed.external_ticket_id == "group:project:7"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   ",
        None,
        "not-a-guid",
        "not-a-guid:SUP-1",
        f"{uuid.uuid4()}:",
        f"{uuid.uuid4()}:   ",
    ],
)
def test_invalid_ids_raise(raw):
    with pytest.raises(InvalidTicketIdError):
        parse_ticket_id(raw)


def test_invalid_id_maps_to_bad_request():
    with pytest.raises(InvalidTicketIdError) as exc_info:
        parse_ticket_id("garbage")
    assert exc_info.value.status_code == 400


def test_build_composite_id_round_trips():
    integration_id = uuid.uuid4()
    composite = build_composite_id(integration_id, "123")

    assert composite == f"{integration_id}:123"
    parsed = parse_ticket_id(composite)
    assert parsed.integration_id == integration_id
    assert parsed.external_ticket_id == "123"


def test_format_predicates():
    guid = str(uuid.uuid4())

    assert is_guid_format(guid)
    assert not is_guid_format("SUP-1")
    assert not is_guid_format("")
    assert is_composite_format(f"{guid}:SUP-1")
    assert not is_composite_format(guid)
    assert not is_composite_format("abc:SUP-1")
    assert not is_composite_format(f"{guid}:")
