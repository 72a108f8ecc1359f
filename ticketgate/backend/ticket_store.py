"""In-memory booking authority used for local runs and tests."""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..state import TicketSnapshot, VerificationOutcome

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TicketRecord:
    identifier: str
    event_name: str
    ticket_type: str
    owner_name: str
    scanned_at: Optional[datetime] = None

    @property
    def is_used(self) -> bool:
        return self.scanned_at is not None

    def snapshot(self) -> TicketSnapshot:
        return TicketSnapshot(
            identifier=self.identifier,
            event_name=self.event_name,
            ticket_type=self.ticket_type,
            owner_name=self.owner_name,
            scanned_at=self.scanned_at,
        )


class ConsumeStatus(str, enum.Enum):
    CONSUMED = "consumed"
    ALREADY_USED = "already_used"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ConsumeResult:
    status: ConsumeStatus
    record: Optional[TicketRecord] = None


def sample_tickets(now: Optional[datetime] = None) -> List[TicketRecord]:
    """Demo bookings served by the mock booking API."""
    now = now or _utcnow()
    return [
        TicketRecord(
            identifier="686b52a51f85f2ba7bf56f36",
            event_name="Starlight Music Festival",
            ticket_type="VIP Access",
            owner_name="Jane Doe",
        ),
        TicketRecord(
            identifier="1234567890abcdef12345678",
            event_name="Tech Conference 2024",
            ticket_type="Full Pass",
            owner_name="Alice Johnson",
            scanned_at=now - timedelta(hours=2),
        ),
        TicketRecord(
            identifier="abcdef1234567890abcdef12",
            event_name="Sports Championship",
            ticket_type="General Admission",
            owner_name="John Smith",
        ),
    ]


class TicketStore:
    """Ticket state keyed by booking identifier.

    ``consume`` checks and marks a ticket without suspending, so on a single
    event loop two consumers of the same identifier can never both win.
    """

    def __init__(self, records: Optional[Iterable[TicketRecord]] = None, *, clock: Optional[Clock] = None) -> None:
        self._clock = clock or _utcnow
        self._records: Dict[str, TicketRecord] = {}
        for record in records or ():
            self.add(record)

    @classmethod
    def with_samples(cls, *, clock: Optional[Clock] = None) -> "TicketStore":
        now = (clock or _utcnow)()
        return cls(sample_tickets(now), clock=clock)

    def add(self, record: TicketRecord) -> None:
        self._records[record.identifier] = record

    def find(self, identifier: str) -> Optional[TicketRecord]:
        return self._records.get(identifier)

    def consume(self, identifier: str) -> ConsumeResult:
        record = self._records.get(identifier)
        if record is None:
            return ConsumeResult(ConsumeStatus.NOT_FOUND)
        if record.is_used:
            return ConsumeResult(ConsumeStatus.ALREADY_USED, record)
        used = replace(record, scanned_at=self._clock())
        self._records[identifier] = used
        logger.info("ticket_store: consumed %s", identifier)
        return ConsumeResult(ConsumeStatus.CONSUMED, used)

    def __len__(self) -> int:
        return len(self._records)


class InMemoryTicketAuthority:
    """TicketAuthority backed directly by a TicketStore, no network involved."""

    def __init__(self, store: Optional[TicketStore] = None) -> None:
        self.store = store if store is not None else TicketStore.with_samples()
        self.calls: List[str] = []

    async def consume(self, identifier: str, credential: str) -> VerificationOutcome:
        self.calls.append(identifier)
        if not credential:
            logger.error("memory_authority: refusing unauthenticated consume")
            return VerificationOutcome.error()

        result = self.store.consume(identifier)
        if result.status is ConsumeStatus.NOT_FOUND or result.record is None:
            return VerificationOutcome.invalid()
        if result.status is ConsumeStatus.ALREADY_USED:
            return VerificationOutcome.already_scanned(result.record.snapshot())
        return VerificationOutcome.valid(result.record.snapshot())

    async def aclose(self) -> None:
        return None


__all__ = [
    "TicketRecord",
    "TicketStore",
    "ConsumeStatus",
    "ConsumeResult",
    "InMemoryTicketAuthority",
    "sample_tickets",
]
