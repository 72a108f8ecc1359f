"""Fakes and constants shared by the test modules."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from ticketgate.state import TicketSnapshot, VerificationOutcome

FESTIVAL_ID = "686b52a51f85f2ba7bf56f36"
USED_ID = "1234567890abcdef12345678"
SPORTS_ID = "abcdef1234567890abcdef12"
FESTIVAL_URL = f"https://tixbook.com/booking/{FESTIVAL_ID}"
TOKEN = "test-bearer-token-123"


class SteppingClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class FakeDecoder:
    """Decoder driven by the test: pushed payloads are yielded in order."""

    def __init__(self, fail_on_open: Optional[Exception] = None) -> None:
        self.fail_on_open = fail_on_open
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self.open_count = 0
        self.close_count = 0
        self.is_open = False

    def push(self, item: object) -> None:
        self._queue.put_nowait(item)

    async def open(self) -> None:
        if self.fail_on_open is not None:
            raise self.fail_on_open
        self.open_count += 1
        self.is_open = True

    async def close(self) -> None:
        if self.is_open:
            self.close_count += 1
            self.is_open = False

    async def payloads(self):
        while True:
            item = await self._queue.get()
            if isinstance(item, Exception):
                raise item
            yield item


class GatedAuthority:
    """Authority whose consume call blocks until the test releases it."""

    def __init__(self, outcome: Optional[VerificationOutcome] = None) -> None:
        self.outcome = outcome or VerificationOutcome.valid(
            TicketSnapshot(
                identifier=FESTIVAL_ID,
                event_name="Starlight Music Festival",
                ticket_type="VIP Access",
                owner_name="Jane Doe",
                scanned_at=datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc),
            )
        )
        self.release = asyncio.Event()
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    async def consume(self, identifier: str, credential: str) -> VerificationOutcome:
        self.calls.append((identifier, credential))
        await self.release.wait()
        return self.outcome

    async def aclose(self) -> None:
        self.closed = True


class ExplodingAuthority:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls: List[str] = []

    async def consume(self, identifier: str, credential: str) -> VerificationOutcome:
        self.calls.append(identifier)
        raise self.exc

    async def aclose(self) -> None:
        return None


async def wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


