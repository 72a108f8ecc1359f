"""Scan reconciliation for the ticketgate station: decode → extract → consume → show."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from .backend.authority import CredentialProvider, TicketAuthority
from .backend.http_client import BookingHttpClient
from .config import Settings, get_settings
from .extractor import IdentifierExtractor
from .sensors.qr_decoder import CameraError, CameraFailure, Decoder, QRDecoder
from .state import (
    MSG_NO_CREDENTIAL,
    ControllerEvent,
    ScanHistoryEntry,
    ScanPhase,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ControllerStateError(RuntimeError):
    """Raised when the controller lifecycle is driven out of order."""


class ScanController:
    """Owns the scan phase machine, the outcome on screen and the session history.

    At most one resolution is in flight at a time. The guard is the phase
    itself: ``handle_decode`` moves IDLE → RESOLVING before the first
    suspension point, so decode events that arrive while the booking API call
    is awaited are dropped rather than queued.

    Each re-arm bumps ``generation``. Decode events and resolutions carry the
    generation they started under and are discarded if it is no longer
    current. A resolution orphaned by ``force_reset`` still blocks new decodes
    until its booking API call returns.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        authority: Optional[TicketAuthority] = None,
        decoder: Optional[Decoder] = None,
        credential_provider: Optional[CredentialProvider] = None,
        extractor: Optional[IdentifierExtractor] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._authority: TicketAuthority = authority if authority is not None else BookingHttpClient(self.settings)
        if decoder is None and self.settings.scanner.enabled:
            decoder = QRDecoder(self.settings.scanner)
        self._decoder: Optional[Decoder] = decoder
        self._credential: Optional[str] = self.settings.auth_token
        self._credential_provider: CredentialProvider = credential_provider or self.current_credential
        self._extractor = extractor or IdentifierExtractor(
            booking_hosts=self.settings.booking_hosts,
            token_fields=self.settings.token_fields,
        )
        self._clock: Clock = clock or _utcnow

        self._phase: ScanPhase = ScanPhase.IDLE
        self._outcome: Optional[VerificationOutcome] = None
        self._history: Deque[ScanHistoryEntry] = deque()
        self._generation: int = 0
        self._device_error: Optional[CameraError] = None
        self._started = False

        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._scan_task: Optional[asyncio.Task[None]] = None
        self._resolution_task: Optional[asyncio.Task[Optional[VerificationOutcome]]] = None

    # ============================================================
    # Read-only state for presentation
    # ============================================================

    @property
    def phase(self) -> ScanPhase:
        return self._phase

    @property
    def outcome(self) -> Optional[VerificationOutcome]:
        return self._outcome

    @property
    def history(self) -> Tuple[ScanHistoryEntry, ...]:
        """Completed resolutions, newest first."""
        return tuple(self._history)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def device_error(self) -> Optional[CameraError]:
        return self._device_error

    @property
    def scanner_armed(self) -> bool:
        return self._scan_task is not None and not self._scan_task.done()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "generation": self._generation,
            "outcome": self._outcome.to_payload() if self._outcome else None,
            "history": [entry.to_payload() for entry in self._history],
            "device_error": (
                {"kind": self._device_error.kind.value, "message": self._device_error.user_message}
                if self._device_error
                else None
            ),
            "authenticated": bool(self._credential_provider()),
        }

    # ============================================================
    # Credential boundary
    # ============================================================

    def current_credential(self) -> Optional[str]:
        return self._credential

    def set_credential(self, token: Optional[str]) -> None:
        self._credential = token.strip() if token and token.strip() else None
        logger.info("Credential %s", "stored" if self._credential else "cleared")

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> None:
        if self._started:
            raise ControllerStateError("Scan controller already started")
        logger.info("Starting scan controller")
        self._started = True
        self._device_error = None
        self._phase = ScanPhase.IDLE
        await self._arm_scanner()
        logger.info("Scan controller started in IDLE (generation=%d)", self._generation)

    async def stop(self) -> None:
        logger.info("Stopping scan controller")
        # Cleared before the first await; a reset still settling must not re-arm.
        self._started = False
        await self._disarm_scanner()

        task = self._resolution_task
        self._resolution_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping resolution task: %s", e)

        try:
            await self._authority.aclose()
        except Exception as e:
            logger.warning("Error closing booking authority: %s", e)

        self._phase = ScanPhase.IDLE
        logger.info("Scan controller stopped")

    # ============================================================
    # UI fan-out
    # ============================================================

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    async def _broadcast(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _advance_phase(
        self,
        phase: ScanPhase,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        previous = self._phase
        self._phase = phase
        logger.debug("Phase %s → %s", previous.value, phase.value)
        await self._broadcast(ControllerEvent(type="state", data=data or {}, phase=phase, error=error))

    # ============================================================
    # Decode events
    # ============================================================

    async def handle_decode(self, payload: Optional[str], *, generation: Optional[int] = None) -> bool:
        """Accept one decode event if the guards allow it; returns whether it was accepted."""
        if not payload or not payload.strip():
            return False

        if generation is not None and generation != self._generation:
            logger.debug("Scan ignored: stale generation %d (current %d)", generation, self._generation)
            return False

        if self._phase is not ScanPhase.IDLE:
            logger.debug("Scan ignored: phase is %s", self._phase.value)
            return False

        # A force-reset resolution may still be awaiting the booking API.
        if self._resolution_task is not None and not self._resolution_task.done():
            logger.debug("Scan ignored: previous resolution still in flight")
            return False

        # Guard is taken here, before anything can suspend.
        self._phase = ScanPhase.RESOLVING
        started_generation = self._generation
        logger.info("Scan detected (generation=%d)", started_generation)
        self._resolution_task = asyncio.create_task(
            self._resolve(payload, started_generation), name="scan-resolution"
        )
        await self._broadcast(ControllerEvent(type="state", data={}, phase=ScanPhase.RESOLVING))
        return True

    async def wait_resolved(self) -> Optional[VerificationOutcome]:
        """Wait for the in-flight resolution; returns its applied outcome, if any."""
        task = self._resolution_task
        if task is None:
            return None
        return await task

    async def _resolve(self, payload: str, generation: int) -> Optional[VerificationOutcome]:
        identifier: Optional[str] = None
        try:
            identifier = self._extractor.extract(payload)
            if identifier is None:
                logger.info("Scan rejected: unrecognized payload format")
                outcome = VerificationOutcome.malformed()
            else:
                credential = self._credential_provider()
                if not credential:
                    logger.warning("No credential available; booking %s not submitted", identifier)
                    outcome = VerificationOutcome.error(MSG_NO_CREDENTIAL)
                else:
                    outcome = await self._authority.consume(identifier, credential)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("❌ Unexpected resolution error: %s", exc)
            outcome = VerificationOutcome.error()

        if generation != self._generation or self._phase is not ScanPhase.RESOLVING:
            logger.info(
                "Discarding %s outcome from generation %d (current generation=%d, phase=%s)",
                outcome.kind.value,
                generation,
                self._generation,
                self._phase.value,
            )
            return None

        entry = ScanHistoryEntry(
            outcome=outcome,
            payload=payload,
            identifier=identifier,
            observed_at=self._clock(),
        )
        self._history.appendleft(entry)
        self._outcome = outcome
        logger.info("Verification result: %s (%s)", outcome.kind.value, identifier or "unparsed payload")
        await self._advance_phase(
            ScanPhase.SHOWING,
            data={"outcome": outcome.to_payload(), "entry": entry.to_payload()},
        )
        return outcome

    # ============================================================
    # Dismiss / re-arm
    # ============================================================

    async def dismiss(self) -> bool:
        """Operator acknowledged the outcome on screen."""
        if self._phase is not ScanPhase.SHOWING:
            logger.debug("Dismiss ignored: phase is %s", self._phase.value)
            return False
        await self._rearm(reason="dismiss")
        return True

    async def force_reset(self) -> bool:
        """Re-arm from RESOLVING or SHOWING; an in-flight outcome is discarded."""
        if self._phase not in (ScanPhase.RESOLVING, ScanPhase.SHOWING):
            logger.debug("Reset ignored: phase is %s", self._phase.value)
            return False
        await self._rearm(reason="forced")
        return True

    async def _rearm(self, *, reason: str) -> None:
        logger.info("Resetting scanner (%s)", reason)
        await self._advance_phase(ScanPhase.RESETTING, data={"reason": reason})
        try:
            await self._disarm_scanner()
            settle_seconds = self.settings.scanner.reset_settle_ms / 1000.0
            if settle_seconds > 0:
                await asyncio.sleep(settle_seconds)
        finally:
            self._generation += 1
            self._outcome = None
            await self._advance_phase(ScanPhase.IDLE, data={"generation": self._generation})
        await self._arm_scanner()

    # ============================================================
    # Scanner ownership
    # ============================================================

    async def _arm_scanner(self) -> None:
        if not self._started:
            logger.debug("Scanner not armed: controller is stopped")
            return
        if self._decoder is None:
            logger.info("No camera decoder configured; scans arrive through the API only")
            return
        if self._device_error is not None:
            logger.warning("Scanner stays disarmed after device failure (%s)", self._device_error.kind.value)
            return
        if self.scanner_armed:
            return
        self._scan_task = asyncio.create_task(
            self._scan_loop(self._generation), name=f"scanner-gen-{self._generation}"
        )

    async def _disarm_scanner(self) -> None:
        task = self._scan_task
        self._scan_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping scanner task: %s", e)
        if self._decoder is not None:
            try:
                await self._decoder.close()
            except Exception as e:
                logger.warning("Error releasing decoder: %s", e)

    async def _scan_loop(self, generation: int) -> None:
        if self._decoder is None:
            return
        try:
            await self._decoder.open()
            logger.info("📷 Scanner armed (generation=%d)", generation)
            async for payload in self._decoder.payloads():
                await self.handle_decode(payload, generation=generation)
        except asyncio.CancelledError:
            raise
        except CameraError as exc:
            logger.error("📷 Camera failure (%s): %s", exc.kind.value, exc)
            await self._report_device_error(exc)
        except Exception as exc:
            logger.exception("📷 Scanner loop crashed: %s", exc)
            await self._report_device_error(CameraError(CameraFailure.BUSY, str(exc)))
        finally:
            try:
                await self._decoder.close()
            except Exception as e:
                logger.warning("Error releasing decoder: %s", e)

    async def _report_device_error(self, exc: CameraError) -> None:
        self._device_error = exc
        await self._broadcast(
            ControllerEvent(
                type="device_error",
                phase=self._phase,
                data={"kind": exc.kind.value, "message": exc.user_message},
                error=exc.user_message,
            )
        )


__all__ = ["ScanController", "ControllerStateError"]
