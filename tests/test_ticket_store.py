import asyncio

import pytest

from ticketgate.backend.ticket_store import (
    ConsumeStatus,
    InMemoryTicketAuthority,
    TicketRecord,
    TicketStore,
)
from ticketgate.state import OutcomeKind

from tests.helpers import FESTIVAL_ID, SPORTS_ID, TOKEN, USED_ID


def test_samples_are_seeded(store):
    assert len(store) == 3
    assert store.find(USED_ID).is_used
    assert not store.find(FESTIVAL_ID).is_used


def test_consume_marks_once(store):
    first = store.consume(FESTIVAL_ID)
    second = store.consume(FESTIVAL_ID)

    assert first.status is ConsumeStatus.CONSUMED
    assert second.status is ConsumeStatus.ALREADY_USED
    assert second.record.scanned_at == first.record.scanned_at
    assert store.consume("missing").status is ConsumeStatus.NOT_FOUND


def test_records_are_replaced_not_mutated(store):
    before = store.find(SPORTS_ID)
    store.consume(SPORTS_ID)
    assert before.scanned_at is None
    assert store.find(SPORTS_ID).scanned_at is not None


def test_custom_records():
    store = TicketStore([TicketRecord("t1", "Gala", "Seat", "Sam Lee")])
    assert store.consume("t1").status is ConsumeStatus.CONSUMED


async_test = pytest.mark.asyncio


@async_test
async def test_authority_outcomes(authority):
    valid = await authority.consume(FESTIVAL_ID, TOKEN)
    again = await authority.consume(FESTIVAL_ID, TOKEN)
    unknown = await authority.consume("nope", TOKEN)

    assert valid.kind is OutcomeKind.VALID
    assert valid.ticket.scanned_at is not None
    assert again.kind is OutcomeKind.ALREADY_SCANNED
    assert again.ticket.scanned_at == valid.ticket.scanned_at
    assert unknown.kind is OutcomeKind.INVALID
    assert unknown.ticket is None


@async_test
async def test_concurrent_consumers_only_one_wins(authority):
    results = await asyncio.gather(*[authority.consume(SPORTS_ID, TOKEN) for _ in range(20)])
    kinds = [outcome.kind for outcome in results]
    assert kinds.count(OutcomeKind.VALID) == 1
    assert kinds.count(OutcomeKind.ALREADY_SCANNED) == 19


@async_test
async def test_authority_requires_credential():
    authority = InMemoryTicketAuthority()
    outcome = await authority.consume(FESTIVAL_ID, "")
    assert outcome.kind is OutcomeKind.ERROR
    assert not authority.store.find(FESTIVAL_ID).is_used
