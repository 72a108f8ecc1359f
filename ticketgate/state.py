"""Shared scanner state definitions for ticketgate."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


class ScanPhase(str, enum.Enum):
    """
    Controller phases in cycle order:

    1. IDLE       - Scanner armed, no outcome shown
    2. RESOLVING  - One decode event is being extracted and validated
    3. SHOWING    - Outcome displayed, decode events ignored until dismiss
    4. RESETTING  - Camera released, settling before re-arm → IDLE
    """
    IDLE = "idle"
    RESOLVING = "resolving"
    SHOWING = "showing"
    RESETTING = "resetting"


class OutcomeKind(str, enum.Enum):
    VALID = "valid"
    ALREADY_SCANNED = "already_scanned"
    INVALID = "invalid"
    ERROR = "error"


# Operator-facing messages. Transport details never reach these.
MSG_VALID = "Entry Allowed"
MSG_ALREADY_SCANNED = "This ticket has already been used."
MSG_INVALID = "This ticket does not exist."
MSG_MALFORMED = "Unrecognized QR code format. This is not a valid ticket code."
MSG_ERROR = "An unexpected error occurred during verification."
MSG_NO_CREDENTIAL = "Not signed in. Please log in before scanning tickets."


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class TicketSnapshot:
    """Ticket details as reported by the booking authority."""

    identifier: str
    event_name: str
    ticket_type: str
    owner_name: str
    scanned_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.identifier,
            "eventName": self.event_name,
            "ticketType": self.ticket_type,
            "ownerName": self.owner_name,
            "scannedAt": _iso(self.scanned_at),
        }


@dataclass(frozen=True)
class VerificationOutcome:
    """Closed four-way result of validating one identifier."""

    kind: OutcomeKind
    message: str
    ticket: Optional[TicketSnapshot] = None

    @classmethod
    def valid(cls, ticket: Optional[TicketSnapshot] = None, message: str = MSG_VALID) -> "VerificationOutcome":
        return cls(OutcomeKind.VALID, message, ticket)

    @classmethod
    def already_scanned(
        cls, ticket: Optional[TicketSnapshot] = None, message: str = MSG_ALREADY_SCANNED
    ) -> "VerificationOutcome":
        return cls(OutcomeKind.ALREADY_SCANNED, message, ticket)

    @classmethod
    def invalid(cls, message: str = MSG_INVALID) -> "VerificationOutcome":
        return cls(OutcomeKind.INVALID, message)

    @classmethod
    def malformed(cls) -> "VerificationOutcome":
        return cls(OutcomeKind.INVALID, MSG_MALFORMED)

    @classmethod
    def error(cls, message: str = MSG_ERROR) -> "VerificationOutcome":
        return cls(OutcomeKind.ERROR, message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.kind.value, "message": self.message}
        if self.ticket is not None:
            payload["ticket"] = self.ticket.to_payload()
        return payload


@dataclass(frozen=True)
class ScanHistoryEntry:
    """One completed resolution, recorded the instant its outcome was produced."""

    outcome: VerificationOutcome
    payload: str
    identifier: Optional[str]
    observed_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        data = self.outcome.to_payload()
        data.update(
            {
                "ticketId": self.identifier or self.payload,
                "payload": self.payload,
                "timestamp": _iso(self.observed_at),
            }
        )
        return data


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: ScanPhase
    error: Optional[str] = None


__all__ = [
    "ScanPhase",
    "OutcomeKind",
    "TicketSnapshot",
    "VerificationOutcome",
    "ScanHistoryEntry",
    "ControllerEvent",
    "MSG_VALID",
    "MSG_ALREADY_SCANNED",
    "MSG_INVALID",
    "MSG_MALFORMED",
    "MSG_ERROR",
    "MSG_NO_CREDENTIAL",
]
