from datetime import datetime, timezone

import httpx
import pytest

from ticketgate.api import create_app
from ticketgate.backend.http_client import BookingHttpClient, normalize_response
from ticketgate.scan_controller import ScanController
from ticketgate.state import MSG_ERROR, MSG_VALID, OutcomeKind

from tests.helpers import FESTIVAL_ID, TOKEN, USED_ID

RECEIVED_AT = datetime(2026, 10, 19, 18, 30, tzinfo=timezone.utc)

TICKET = {
    "id": FESTIVAL_ID,
    "eventName": "Starlight Music Festival",
    "ticketType": "VIP Access",
    "ownerName": "Jane Doe",
    "scannedAt": "2026-10-19T18:00:00Z",
}


def make_client(settings, handler):
    return BookingHttpClient(settings, transport=httpx.MockTransport(handler))


# ============================================================
# Normalization table
# ============================================================

@pytest.mark.parametrize(
    "status_code, body, expected",
    [
        (200, {"status": "valid", "ticket": TICKET}, OutcomeKind.VALID),
        (200, {"status": "SUCCESS"}, OutcomeKind.VALID),
        (201, {"success": True}, OutcomeKind.VALID),
        (200, {"status": "already_scanned", "ticket": TICKET}, OutcomeKind.ALREADY_SCANNED),
        (200, {"status": "used"}, OutcomeKind.ALREADY_SCANNED),
        (200, {"success": False, "message": "Ticket has already been checked in"}, OutcomeKind.ALREADY_SCANNED),
        (200, {"success": False, "message": "nope"}, OutcomeKind.INVALID),
        (200, {"status": "invalid", "message": "This booking does not exist."}, OutcomeKind.INVALID),
        (200, {"status": "error"}, OutcomeKind.ERROR),
        (200, {"status": "pending"}, OutcomeKind.ERROR),
        (200, {"ticket": "not-an-object"}, OutcomeKind.ERROR),
        (200, ["valid"], OutcomeKind.ERROR),
        (200, None, OutcomeKind.ERROR),
        (400, {"message": "This ticket has already been used."}, OutcomeKind.ALREADY_SCANNED),
        (409, {"error": "Booking already scanned"}, OutcomeKind.ALREADY_SCANNED),
        (404, None, OutcomeKind.INVALID),
        (400, {"message": "Booking not found"}, OutcomeKind.INVALID),
        (400, {"message": "missing field"}, OutcomeKind.ERROR),
        (401, {"message": "Access Denied"}, OutcomeKind.ERROR),
        (403, {"message": "This ticket has already been used."}, OutcomeKind.ERROR),
        (500, {"status": "error", "message": "boom"}, OutcomeKind.ERROR),
        (502, None, OutcomeKind.ERROR),
    ],
)
def test_normalize_response_mapping(status_code, body, expected):
    assert normalize_response(status_code, body, received_at=RECEIVED_AT).kind is expected


def test_valid_ticket_snapshot_is_parsed():
    outcome = normalize_response(200, {"status": "valid", "ticket": TICKET}, received_at=RECEIVED_AT)

    assert outcome.message == MSG_VALID
    assert outcome.ticket.event_name == "Starlight Music Festival"
    assert outcome.ticket.scanned_at == datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


def test_valid_without_scanned_at_uses_receive_time():
    ticket = dict(TICKET, scannedAt=None)
    outcome = normalize_response(200, {"status": "valid", "ticket": ticket}, received_at=RECEIVED_AT)
    assert outcome.ticket.scanned_at == RECEIVED_AT


def test_naive_timestamps_are_read_as_utc():
    ticket = dict(TICKET, scannedAt="2026-10-19T18:00:00")
    outcome = normalize_response(200, {"status": "already_scanned", "ticket": ticket})
    assert outcome.ticket.scanned_at.tzinfo is not None


def test_invalid_and_error_outcomes_carry_no_ticket():
    assert normalize_response(200, {"status": "invalid", "ticket": TICKET}).ticket is None
    assert normalize_response(500, {"ticket": TICKET}).ticket is None


def test_error_message_never_echoes_backend_text():
    outcome = normalize_response(500, {"message": "psycopg2.OperationalError: connection refused"})
    assert outcome.message == MSG_ERROR


# ============================================================
# Client
# ============================================================

async_test = pytest.mark.asyncio


@async_test
async def test_consume_sends_one_authorized_request(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "valid", "message": "Entry Allowed", "ticket": TICKET})

    client = make_client(settings, handler)
    outcome = await client.consume(FESTIVAL_ID, TOKEN)
    await client.aclose()

    assert outcome.kind is OutcomeKind.VALID
    assert len(seen) == 1
    assert seen[0].method == "GET"
    assert seen[0].url.path == f"/api/booking/validate/{FESTIVAL_ID}"
    assert seen[0].headers["authorization"] == f"Bearer {TOKEN}"


@async_test
async def test_identifier_is_path_quoted(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404)

    client = make_client(settings, handler)
    outcome = await client.consume("a/b c", TOKEN)
    await client.aclose()

    assert outcome.kind is OutcomeKind.INVALID
    assert seen[0].url.raw_path.decode() == "/api/booking/validate/a%2Fb%20c"


@async_test
@pytest.mark.parametrize(
    "exc_factory",
    [
        lambda request: httpx.ReadTimeout("read timed out", request=request),
        lambda request: httpx.ConnectError("connection refused on 10.0.0.7", request=request),
    ],
)
async def test_transport_failures_are_not_retried(settings, exc_factory):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise exc_factory(request)

    client = make_client(settings, handler)
    outcome = await client.consume(FESTIVAL_ID, TOKEN)
    await client.aclose()

    assert outcome.kind is OutcomeKind.ERROR
    assert outcome.message == MSG_ERROR
    assert len(attempts) == 1


@async_test
async def test_non_json_body_is_error(settings):
    client = make_client(settings, lambda request: httpx.Response(200, text="<html>proxy</html>"))
    outcome = await client.consume(FESTIVAL_ID, TOKEN)
    await client.aclose()
    assert outcome.kind is OutcomeKind.ERROR


@async_test
async def test_missing_credential_sends_nothing(settings):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(200, json={"status": "valid"})

    client = make_client(settings, handler)
    outcome = await client.consume(FESTIVAL_ID, "")
    await client.aclose()

    assert outcome.kind is OutcomeKind.ERROR
    assert attempts == []


# ============================================================
# Against the mock booking API
# ============================================================

def mock_backend_client(settings, store):
    settings.mock_backend_enabled = True
    app = create_app(settings, controller=ScanController(settings=settings), store=store)
    return BookingHttpClient(settings, transport=httpx.ASGITransport(app=app))


@async_test
async def test_mock_backend_consumes_once(settings, store):
    client = mock_backend_client(settings, store)

    first = await client.consume(FESTIVAL_ID, TOKEN)
    second = await client.consume(FESTIVAL_ID, TOKEN)
    await client.aclose()

    assert first.kind is OutcomeKind.VALID
    assert second.kind is OutcomeKind.ALREADY_SCANNED
    assert second.ticket.scanned_at == first.ticket.scanned_at


@async_test
async def test_mock_backend_reports_seeded_used_and_unknown(settings, store):
    client = mock_backend_client(settings, store)

    used = await client.consume(USED_ID, TOKEN)
    unknown = await client.consume("ffffffffffffffffffffffff", TOKEN)
    await client.aclose()

    assert used.kind is OutcomeKind.ALREADY_SCANNED
    assert used.ticket.scanned_at is not None
    assert unknown.kind is OutcomeKind.INVALID


@async_test
async def test_mock_backend_rejects_short_token(settings, store):
    client = mock_backend_client(settings, store)
    outcome = await client.consume(FESTIVAL_ID, "short")
    await client.aclose()

    assert outcome.kind is OutcomeKind.ERROR
    assert store.find(FESTIVAL_ID).scanned_at is None
