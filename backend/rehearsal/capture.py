"""
Camera/microphone capability as seen from the server.

The browser owns the real media tracks; the server only tracks whether the
current session holds them. A handle is exclusively owned by one session and
must be released on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from rehearsal.errors import CapabilityError

LOG = logging.getLogger("interview.capture")

LossCallback = Callable[[], None]


class CaptureHandle:
    def __init__(self, on_release: Optional[Callable[["CaptureHandle"], None]] = None) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.released = False
        self.lost = False
        self._on_release = on_release
        self._loss_callbacks: List[LossCallback] = []

    def on_loss(self, callback: LossCallback) -> None:
        self._loss_callbacks.append(callback)

    def signal_loss(self) -> None:
        """Video track ended. Fires the loss callbacks at most once."""
        if self.lost or self.released:
            return
        self.lost = True
        LOG.warning("Capture lost (handle=%s)", self.id)
        for callback in list(self._loss_callbacks):
            callback()

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self._loss_callbacks.clear()
        if self._on_release is not None:
            self._on_release(self)


class CaptureDevice(Protocol):
    async def acquire(self) -> CaptureHandle: ...


class StaticCaptureDevice:
    """Grants (or refuses) capture without a client. Used headless and in tests."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.handles: List[CaptureHandle] = []

    async def acquire(self) -> CaptureHandle:
        if not self.available:
            raise CapabilityError("Camera and microphone are unavailable")
        handle = CaptureHandle()
        self.handles.append(handle)
        return handle


class ClientCaptureDevice:
    """
    Proxy for the browser's getUserMedia call over the interview socket.

    acquire() sends a capture_request frame and waits for the client's
    capture_ready / capture_denied reply, which the socket loop forwards via
    resolve(). Later capture_lost frames go to signal_loss().
    """

    def __init__(self, send: Callable[[Dict[str, Any]], Awaitable[None]], timeout: float = 20.0) -> None:
        self._send = send
        self._timeout = timeout
        self._pending: Optional[asyncio.Future] = None
        self.handle: Optional[CaptureHandle] = None

    async def acquire(self) -> CaptureHandle:
        if self.handle is not None and not self.handle.released:
            raise CapabilityError("Capture is already held by another session")
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        await self._send({"type": "capture_request", "video": True, "audio": True})
        try:
            granted, reason = await asyncio.wait_for(self._pending, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise CapabilityError("Timed out waiting for camera permission") from exc
        finally:
            self._pending = None
        if not granted:
            raise CapabilityError(reason or "Camera permission denied")
        self.handle = CaptureHandle(on_release=self._released)
        return self.handle

    def resolve(self, granted: bool, reason: Optional[str] = None) -> bool:
        if self._pending is None or self._pending.done():
            LOG.info("Ignoring capture reply with no pending request (granted=%s)", granted)
            return False
        self._pending.set_result((granted, reason))
        return True

    def signal_loss(self) -> None:
        if self.handle is not None:
            self.handle.signal_loss()

    def _released(self, handle: CaptureHandle) -> None:
        if self.handle is handle:
            self.handle = None
        LOG.info("Capture released (handle=%s)", handle.id)
