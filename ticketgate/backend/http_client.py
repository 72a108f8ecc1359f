"""HTTP client for the booking API consume-ticket endpoint."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import Settings
from ..state import (
    MSG_ALREADY_SCANNED,
    MSG_INVALID,
    MSG_VALID,
    OutcomeKind,
    TicketSnapshot,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)


class TicketBody(BaseModel):
    """Ticket fields as the booking API spells them."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    event_name: str = Field("", alias="eventName")
    ticket_type: str = Field("", alias="ticketType")
    owner_name: str = Field("", alias="ownerName")
    scanned_at: Optional[datetime] = Field(None, alias="scannedAt")


class ConsumeResponseBody(BaseModel):
    """Loose envelope covering every response shape the booking API has used."""

    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None
    success: Optional[bool] = None
    message: Optional[str] = None
    ticket: Optional[TicketBody] = None


# ============================================================
# Response normalization
# ============================================================
#
#   HTTP status       body signal                                   outcome
#   2xx               status valid|success|ok|consumed|checked_in   valid
#   2xx               success: true (no status)                     valid
#   2xx               status already_scanned|already_used|used      already_scanned
#   2xx               status invalid|not_found                      invalid
#   2xx               success: false + "already ..." message        already_scanned
#   2xx               success: false otherwise                      invalid
#   2xx               status error                                  error
#   400/409/410/422   "already used/scanned/consumed" message       already_scanned
#   404               any                                           invalid
#   400/410/422       "not found/does not exist/invalid" message    invalid
#   401/403           any                                           error
#   anything else     any                                           error

_STATUS_TABLE: Dict[str, OutcomeKind] = {
    "valid": OutcomeKind.VALID,
    "success": OutcomeKind.VALID,
    "ok": OutcomeKind.VALID,
    "consumed": OutcomeKind.VALID,
    "checked_in": OutcomeKind.VALID,
    "already_scanned": OutcomeKind.ALREADY_SCANNED,
    "already_used": OutcomeKind.ALREADY_SCANNED,
    "used": OutcomeKind.ALREADY_SCANNED,
    "invalid": OutcomeKind.INVALID,
    "not_found": OutcomeKind.INVALID,
    "error": OutcomeKind.ERROR,
}

_ALREADY_CONSUMED_RE = re.compile(
    r"already\s+(?:been\s+)?(?:used|scanned|consumed|redeemed|checked[\s-]*in)", re.IGNORECASE
)
_NOT_FOUND_RE = re.compile(r"not\s+found|does\s+not\s+exist|\binvalid\b", re.IGNORECASE)

_CONFLICT_STATUSES = frozenset({400, 409, 410, 422})
_NOT_FOUND_STATUSES = frozenset({400, 410, 422})
_UNAUTHORIZED_STATUSES = frozenset({401, 403})


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _snapshot(ticket: Optional[TicketBody], *, default_scanned_at: Optional[datetime] = None) -> Optional[TicketSnapshot]:
    if ticket is None:
        return None
    return TicketSnapshot(
        identifier=ticket.id,
        event_name=ticket.event_name,
        ticket_type=ticket.ticket_type,
        owner_name=ticket.owner_name,
        scanned_at=_as_utc(ticket.scanned_at) or default_scanned_at,
    )


def _raw_message(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str):
                return value
    return ""


def normalize_response(
    status_code: int,
    body: Any,
    *,
    received_at: Optional[datetime] = None,
) -> VerificationOutcome:
    """Map one raw booking API response onto the closed outcome taxonomy."""

    received_at = received_at or datetime.now(timezone.utc)
    message = _raw_message(body)

    if 200 <= status_code < 300:
        parsed: Optional[ConsumeResponseBody] = None
        if isinstance(body, dict):
            try:
                parsed = ConsumeResponseBody.model_validate(body)
            except ValidationError as exc:
                logger.error("booking.normalize: unrecognized body shape - %s", exc.errors()[:3])
        if parsed is None:
            logger.error("booking.normalize: HTTP %d without a usable body", status_code)
            return VerificationOutcome.error()

        kind: Optional[OutcomeKind] = None
        if parsed.status:
            kind = _STATUS_TABLE.get(parsed.status.strip().lower())
        elif parsed.success is True:
            kind = OutcomeKind.VALID
        elif parsed.success is False:
            kind = OutcomeKind.ALREADY_SCANNED if _ALREADY_CONSUMED_RE.search(message) else OutcomeKind.INVALID

        if kind is OutcomeKind.VALID:
            return VerificationOutcome.valid(
                _snapshot(parsed.ticket, default_scanned_at=received_at),
                message=parsed.message or MSG_VALID,
            )
        if kind is OutcomeKind.ALREADY_SCANNED:
            ticket = _snapshot(parsed.ticket)
            if ticket is not None and ticket.scanned_at is None:
                logger.warning("booking.normalize: already-scanned ticket %s without scannedAt", ticket.identifier)
            return VerificationOutcome.already_scanned(
                ticket, message=parsed.message or MSG_ALREADY_SCANNED
            )
        if kind is OutcomeKind.INVALID:
            return VerificationOutcome.invalid(parsed.message or MSG_INVALID)
        if kind is OutcomeKind.ERROR:
            logger.error("booking.normalize: backend reported error - %s", message)
            return VerificationOutcome.error()

        logger.error("booking.normalize: unrecognized status %r", parsed.status)
        return VerificationOutcome.error()

    if status_code in _CONFLICT_STATUSES and _ALREADY_CONSUMED_RE.search(message):
        ticket = None
        if isinstance(body, dict) and isinstance(body.get("ticket"), dict):
            try:
                ticket = _snapshot(TicketBody.model_validate(body["ticket"]))
            except ValidationError:
                logger.warning("booking.normalize: ignoring malformed ticket on HTTP %d", status_code)
        return VerificationOutcome.already_scanned(ticket)

    if status_code == 404 or (status_code in _NOT_FOUND_STATUSES and _NOT_FOUND_RE.search(message)):
        return VerificationOutcome.invalid()

    if status_code in _UNAUTHORIZED_STATUSES:
        logger.error("booking.normalize: unauthorized (HTTP %d) - %s", status_code, message)
        return VerificationOutcome.error()

    logger.error("booking.normalize: HTTP %d - %s", status_code, message or "<no message>")
    return VerificationOutcome.error()


class BookingHttpClient:
    """Thin wrapper around the booking API consume endpoint."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_api_url,
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
        )

    def _consume_path(self, identifier: str) -> str:
        return self.settings.validate_path.format(booking_id=quote(identifier, safe=""))

    async def consume(self, identifier: str, credential: str) -> VerificationOutcome:
        """Consume ``identifier`` once. Never retries and never raises."""
        if not credential:
            logger.error("booking.consume: refusing unauthenticated request")
            return VerificationOutcome.error()

        headers = {"Authorization": f"Bearer {credential}", "Accept": "application/json"}
        try:
            logger.info("booking.consume: validating booking %s", identifier)
            response = await self._client.get(self._consume_path(identifier), headers=headers)
        except httpx.TimeoutException:
            logger.error("booking.consume: request timeout for %s", identifier)
            return VerificationOutcome.error()
        except httpx.TransportError as e:
            logger.error("booking.consume: network error - %s", e)
            return VerificationOutcome.error()
        except Exception as e:
            logger.exception("booking.consume: unexpected error - %s", e)
            return VerificationOutcome.error()

        received_at = datetime.now(timezone.utc)
        try:
            body: Any = response.json()
        except ValueError:
            logger.warning("booking.consume: HTTP %d with non-JSON body", response.status_code)
            body = None

        outcome = normalize_response(response.status_code, body, received_at=received_at)
        logger.info("booking.consume: %s -> %s", identifier, outcome.kind.value)
        return outcome

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


__all__ = ["BookingHttpClient", "ConsumeResponseBody", "TicketBody", "normalize_response"]
