"""
Exclusive ownership of a recording device (camera or microphone).

A device is held by at most one CaptureSession at a time. The session
acquires it on entry and releases it on every exit path: a normal stop,
cancellation of the recording task, or an error while reading.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .errors import InvalidState, ValidationError
from .models import MediaAsset

logger = logging.getLogger("urbanpulse.capture")


class CaptureDevice:
    """Source of raw media chunks. Subclasses wrap the actual hardware or stream."""

    content_type = "application/octet-stream"

    def __init__(self, name: str):
        self.name = name
        self._lock = asyncio.Lock()

    @property
    def in_use(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        return None

    async def release(self) -> None:
        return None

    async def read_chunk(self) -> bytes:
        """Return the next chunk, or ``b""`` once the source is exhausted."""
        raise NotImplementedError


class CaptureSession:
    """Async context manager that owns ``device`` for one recording."""

    def __init__(self, device: CaptureDevice, max_bytes: Optional[int] = None):
        self.device = device
        self.max_bytes = max_bytes
        self._stop = asyncio.Event()
        self._held = False

    async def __aenter__(self) -> "CaptureSession":
        if self.device.in_use:
            raise InvalidState(f"Capture device {self.device.name} is already in use")
        await self.device._lock.acquire()
        try:
            await self.device.acquire()
        except BaseException:
            self.device._lock.release()
            raise
        self._held = True
        logger.info("Capture device %s acquired", self.device.name)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            await self.device.release()
        finally:
            self.device._lock.release()
            logger.info("Capture device %s released", self.device.name)

    def stop(self) -> None:
        """Ask a running ``record()`` to finish after the current chunk."""
        self._stop.set()

    async def record(self) -> MediaAsset:
        if not self._held:
            raise InvalidState("Capture session is not active")
        chunks: List[bytes] = []
        size = 0
        while not self._stop.is_set():
            chunk = await self.device.read_chunk()
            if not chunk:
                break
            chunks.append(chunk)
            size += len(chunk)
            if self.max_bytes is not None and size > self.max_bytes:
                raise ValidationError(f"Recording exceeds {self.max_bytes} bytes")
        if not chunks:
            raise ValidationError("Recording captured no data")
        return MediaAsset(data=b"".join(chunks), content_type=self.device.content_type)


__all__ = ["CaptureDevice", "CaptureSession"]
