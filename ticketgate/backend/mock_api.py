"""Local stand-in for the booking API, served from the scanner app itself."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ..state import MSG_ALREADY_SCANNED, MSG_ERROR, MSG_INVALID, MSG_VALID
from .ticket_store import ConsumeStatus, TicketStore

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 10


def _auth_token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return request.cookies.get("authToken") or None


def build_mock_router(store: TicketStore) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["mock-booking-api"])

    @router.get("/booking/validate/{booking_id}")
    async def validate_booking(booking_id: str, request: Request) -> JSONResponse:
        token = _auth_token_from_request(request)
        if not token:
            return JSONResponse({"message": "Access Denied"}, status_code=status.HTTP_401_UNAUTHORIZED)
        if len(token) < MIN_TOKEN_LENGTH:
            return JSONResponse({"message": "Invalid token"}, status_code=status.HTTP_401_UNAUTHORIZED)

        try:
            result = store.consume(booking_id)
        except Exception as e:
            logger.exception("mock_api: error validating booking - %s", e)
            return JSONResponse(
                {"status": "error", "message": MSG_ERROR},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if result.status is ConsumeStatus.NOT_FOUND or result.record is None:
            return JSONResponse({"status": "invalid", "message": MSG_INVALID})

        if result.status is ConsumeStatus.CONSUMED:
            body = {"status": "valid", "message": MSG_VALID}
        else:
            body = {"status": "already_scanned", "message": MSG_ALREADY_SCANNED}
        body["ticket"] = result.record.snapshot().to_payload()
        return JSONResponse(body)

    @router.get("/auth/verify")
    async def verify_token(request: Request) -> JSONResponse:
        if not _auth_token_from_request(request):
            return JSONResponse(
                {"success": False, "message": "No token provided"},
                status_code=status.HTTP_401_UNAUTHORIZED,
            )
        return JSONResponse({"success": True, "message": "Token is valid"})

    return router


__all__ = ["build_mock_router", "MIN_TOKEN_LENGTH"]
