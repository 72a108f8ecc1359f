"""FastAPI surface for the ticketgate scanning station."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import psutil
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from . import __version__
from .backend.mock_api import build_mock_router
from .backend.ticket_store import TicketStore
from .config import Settings, get_settings
from .scan_controller import ScanController

logger = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    payload: Optional[str] = None


class CredentialRequest(BaseModel):
    token: str = Field(..., min_length=1)


def create_app(
    settings: Optional[Settings] = None,
    *,
    controller: Optional[ScanController] = None,
    store: Optional[TicketStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    manager = controller or ScanController(settings=settings)

    app = FastAPI(title="ticketgate", version=__version__)
    app.state.settings = settings
    app.state.controller = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.mock_backend_enabled:
        mock_store = store if store is not None else TicketStore.with_samples()
        app.state.ticket_store = mock_store
        app.include_router(build_mock_router(mock_store))
        logger.info("Mock booking API enabled (%d sample bookings)", len(mock_store))

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await manager.start()
            logger.info("Application started successfully")
        except Exception as e:
            logger.exception("Failed to start scan controller: %s", e)
            logger.error("Application startup failed - scanning may be unavailable")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.stop()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": manager.phase.value})

    @app.get("/state")
    async def current_state() -> JSONResponse:
        return JSONResponse(manager.snapshot())

    @app.post("/dismiss")
    async def dismiss() -> JSONResponse:
        if not await manager.dismiss():
            return JSONResponse(
                {"status": "ignored", "phase": manager.phase.value},
                status_code=status.HTTP_409_CONFLICT,
            )
        return JSONResponse({"status": "ok", "phase": manager.phase.value, "generation": manager.generation})

    @app.post("/reset")
    async def force_reset() -> JSONResponse:
        if not await manager.force_reset():
            return JSONResponse(
                {"status": "ignored", "phase": manager.phase.value},
                status_code=status.HTTP_409_CONFLICT,
            )
        return JSONResponse({"status": "ok", "phase": manager.phase.value, "generation": manager.generation})

    @app.post("/session/credential")
    async def store_credential(payload: CredentialRequest) -> JSONResponse:
        manager.set_credential(payload.token)
        return JSONResponse({"status": "ok", "authenticated": manager.current_credential() is not None})

    @app.delete("/session/credential")
    async def clear_credential() -> JSONResponse:
        manager.set_credential(None)
        return JSONResponse({"status": "ok", "authenticated": False})

    @app.post("/debug/scan")
    async def debug_scan(payload: ScanRequest) -> JSONResponse:
        """Inject a raw payload as if the camera had decoded it."""
        accepted = await manager.handle_decode(payload.payload)
        if not accepted:
            return JSONResponse({"status": "ignored", "phase": manager.phase.value})
        outcome = await manager.wait_resolved()
        logger.info("🔧 Debug scan resolved: %s", outcome.kind.value if outcome else "discarded")
        return JSONResponse(
            {
                "status": "accepted",
                "phase": manager.phase.value,
                "outcome": outcome.to_payload() if outcome else None,
            }
        )

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()
            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1),
            })
        except Exception as e:
            logger.error("Performance monitoring error: %s", e)
            return JSONResponse({"error": "performance data unavailable"}, status_code=500)

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()
        try:
            await ws.send_json({"type": "snapshot", "phase": manager.phase.value, "data": manager.snapshot()})
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break

                payload = {
                    "type": event.type,
                    "phase": event.phase.value,
                    "data": event.data,
                }
                if event.error:
                    payload["error"] = event.error

                try:
                    await ws.send_json(payload)
                except Exception as e:
                    logger.debug("WebSocket send failed (client disconnected): %s", e)
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("Unexpected error in UI websocket: %s", e)
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


__all__ = ["create_app"]
