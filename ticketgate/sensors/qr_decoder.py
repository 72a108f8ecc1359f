"""
Camera QR decoder.
Opens an OpenCV capture device and yields raw QR payload strings.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, AsyncIterator, Optional, Protocol

from ..config import ScannerSettings

# Optional deps
try:
    import cv2  # type: ignore
except ImportError:
    cv2 = None


logger = logging.getLogger(__name__)

CaptureFactory = Callable[[int], Any]


class CameraFailure(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    UNSUPPORTED = "unsupported"
    BUSY = "busy"
    CONSTRAINT_FAILED = "constraint_failed"


_OPERATOR_MESSAGES = {
    CameraFailure.PERMISSION_DENIED: "Camera access was denied. Check camera permissions.",
    CameraFailure.NOT_FOUND: "No camera was found on this device.",
    CameraFailure.UNSUPPORTED: "Camera scanning is not supported on this device.",
    CameraFailure.BUSY: "The camera is in use by another application.",
    CameraFailure.CONSTRAINT_FAILED: "The camera does not support the requested settings.",
}


class CameraError(RuntimeError):
    """Device-level failure; scanning stays down until the service is restarted."""

    def __init__(self, kind: CameraFailure, detail: Optional[str] = None) -> None:
        super().__init__(detail or _OPERATOR_MESSAGES[kind])
        self.kind = kind

    @property
    def user_message(self) -> str:
        return _OPERATOR_MESSAGES[self.kind]


class Decoder(Protocol):
    """Restartable source of raw payloads; open/close bracket one camera acquisition."""

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    def payloads(self) -> AsyncIterator[str]:
        ...


class QRDecoder:
    """OpenCV capture + QRCodeDetector with repeat suppression."""

    def __init__(
        self,
        settings: ScannerSettings,
        *,
        capture_factory: Optional[CaptureFactory] = None,
        detector: Any = None,
    ) -> None:
        self.settings = settings
        self._capture_factory = capture_factory
        self._detector = detector
        self._cap: Any = None
        self._lock = asyncio.Lock()
        self._last_payload: Optional[str] = None
        self._last_payload_ts: float = 0.0

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def _device_node(self) -> Optional[str]:
        if not sys.platform.startswith("linux"):
            return None
        return f"/dev/video{self.settings.camera_id}"

    async def open(self) -> None:
        async with self._lock:
            if self._cap is not None:
                return
            factory = self._capture_factory
            if factory is None:
                if cv2 is None:
                    raise CameraError(CameraFailure.UNSUPPORTED, "OpenCV is not available")
                factory = cv2.VideoCapture

            node = self._device_node()
            if node and self._capture_factory is None and os.path.exists(node) and not os.access(node, os.R_OK):
                raise CameraError(CameraFailure.PERMISSION_DENIED, f"No read access to {node}")

            logger.info("Opening camera (camera_id=%d)", self.settings.camera_id)
            loop = asyncio.get_running_loop()
            cap = await loop.run_in_executor(None, factory, self.settings.camera_id)
            if cap is None or not cap.isOpened():
                if cap is not None:
                    cap.release()
                if node and self._capture_factory is None and os.path.exists(node):
                    raise CameraError(CameraFailure.BUSY, f"Camera {self.settings.camera_id} could not be opened")
                raise CameraError(CameraFailure.NOT_FOUND, f"Camera {self.settings.camera_id} not found")

            if not self._apply_constraints(cap):
                cap.release()
                raise CameraError(
                    CameraFailure.CONSTRAINT_FAILED,
                    f"Camera rejected {self.settings.resolution_width}x{self.settings.resolution_height}",
                )

            if self._detector is None and cv2 is not None:
                self._detector = cv2.QRCodeDetector()
            self._cap = cap
            self._last_payload = None
            self._last_payload_ts = 0.0
            logger.info("Camera opened")

    def _apply_constraints(self, cap: Any) -> bool:
        if cv2 is None:
            return True
        width_ok = cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        height_ok = cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.fps)
        return bool(width_ok or height_ok)

    async def close(self) -> None:
        async with self._lock:
            if self._cap is None:
                return
            try:
                self._cap.release()
            except Exception as e:
                logger.warning("Error releasing camera: %s", e)
            finally:
                self._cap = None
                logger.info("Camera released")

    def _read_and_decode(self) -> tuple[bool, Optional[str]]:
        """Blocking read of one frame. Returns (frame_ok, payload)."""
        cap = self._cap
        if cap is None:
            return False, None
        ok, frame = cap.read()
        if not ok or frame is None:
            return False, None
        if self._detector is None:
            return True, None
        try:
            data, points, _ = self._detector.detectAndDecode(frame)
        except Exception as e:
            # Detector hiccups are "no code this tick", not device failures.
            logger.debug("QR detect error: %s", e)
            return True, None
        if points is None or not data:
            return True, None
        return True, data

    def _is_repeat(self, payload: str, now: float) -> bool:
        window = self.settings.duplicate_window_seconds
        if payload == self._last_payload and now - self._last_payload_ts < window:
            self._last_payload_ts = now
            return True
        self._last_payload = payload
        self._last_payload_ts = now
        return False

    async def payloads(self) -> AsyncIterator[str]:
        """Yield decoded payloads until closed; raises CameraError on device failure."""
        loop = asyncio.get_running_loop()
        failures = 0
        while True:
            async with self._lock:
                if self._cap is None:
                    return
                frame_ok, payload = await loop.run_in_executor(None, self._read_and_decode)

            if not frame_ok:
                failures += 1
                if failures >= self.settings.max_read_failures:
                    raise CameraError(CameraFailure.BUSY, f"{failures} consecutive frame reads failed")
            else:
                failures = 0
                if payload and not self._is_repeat(payload, time.monotonic()):
                    yield payload

            await asyncio.sleep(self.settings.poll_interval_seconds)


__all__ = ["QRDecoder", "Decoder", "CameraError", "CameraFailure"]
