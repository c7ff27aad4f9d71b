"""Exclusive-ownership camera abstraction."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..errors import FrameCaptureError, ResourceUnavailableError
from ..models import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Supplies still frames to exactly one owner at a time.

    A live verification session and an enrollment capture both go through
    ``acquire``; a second owner is refused with ``ResourceUnavailableError``
    instead of silently sharing the device.
    """

    def __init__(self) -> None:
        self._owner: Optional[Any] = None
        self._lock = asyncio.Lock()

    @property
    def owner(self) -> Optional[Any]:
        return self._owner

    @property
    def in_use(self) -> bool:
        return self._owner is not None

    async def acquire(self, owner: Any) -> None:
        async with self._lock:
            if self._owner is owner:
                return
            if self._owner is not None:
                raise ResourceUnavailableError(
                    "Camera is already in use by another session.",
                    log_message=f"frame source held by {self._owner!r}, refused {owner!r}",
                )
            await self._open()
            self._owner = owner
            logger.info("📷 Frame source acquired by %r", owner)

    async def release(self, owner: Any) -> None:
        async with self._lock:
            if self._owner is not owner:
                return
            try:
                await self._close()
            finally:
                self._owner = None
                logger.info("📷 Frame source released by %r", owner)

    async def capture(self) -> Optional[Frame]:
        """Grab one frame; ``None`` when the device has nothing ready yet."""
        if self._owner is None:
            raise FrameCaptureError(log_message="capture requested on a frame source nobody acquired")
        return await self._read_frame()

    @abstractmethod
    async def _open(self) -> None:
        """Open the device; raise ResourceUnavailableError on failure."""

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _read_frame(self) -> Optional[Frame]:
        ...


__all__ = ["FrameSource"]
