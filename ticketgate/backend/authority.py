"""The consume-ticket capability the scan controller depends on."""
from __future__ import annotations

from collections.abc import Callable
from typing import Optional, Protocol

from ..state import VerificationOutcome

CredentialProvider = Callable[[], Optional[str]]


class TicketAuthority(Protocol):
    """Owner of ticket state; consumes a ticket at most once."""

    async def consume(self, identifier: str, credential: str) -> VerificationOutcome:
        ...

    async def aclose(self) -> None:
        ...


__all__ = ["TicketAuthority", "CredentialProvider"]
