from __future__ import annotations

import pytest

from ticketgate.backend.ticket_store import InMemoryTicketAuthority, TicketStore
from ticketgate.config import ScannerSettings, Settings
from ticketgate.scan_controller import ScanController

from tests.helpers import TOKEN, SteppingClock


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        auth_token=TOKEN,
        backend_api_url="http://testserver",
        log_directory=tmp_path / "logs",
        scanner=ScannerSettings(enabled=False, reset_settle_ms=0, poll_interval_seconds=0.0),
    )


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def store(clock) -> TicketStore:
    return TicketStore.with_samples(clock=clock)


@pytest.fixture
def authority(store) -> InMemoryTicketAuthority:
    return InMemoryTicketAuthority(store)


@pytest.fixture
def controller(settings, authority, clock) -> ScanController:
    return ScanController(settings=settings, authority=authority, clock=clock)
