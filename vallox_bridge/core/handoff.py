"""Single-slot handoff between the poll pipeline and the processing stage."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from ..protocol.frames import FrameBatch

LOGGER = logging.getLogger(__name__)


class BatchSlot:
    """Holds at most one unprocessed :class:`FrameBatch`.

    ``put`` waits until the previous batch has been taken *and* reset by the
    consumer, so a producer stalls for the whole decode/persist pass rather
    than just the pop. Every ``put`` returns a ticket; ``reset`` only accepts
    the ticket of the batch currently held, which keeps a late reset from an
    earlier cycle from reopening the slot.

    Usage:
        slot = BatchSlot()

        # producer
        await slot.put(batch)

        # consumer
        ticket, batch = await slot.take()
        try:
            ...
        finally:
            slot.reset(ticket)
    """

    def __init__(self) -> None:
        self._batch: Optional[FrameBatch] = None
        self._cycle = 0
        self._open = True
        self._opened = asyncio.Event()
        self._opened.set()
        self._filled = asyncio.Event()

    @property
    def cycle(self) -> int:
        """Ticket of the most recent ``put``."""
        return self._cycle

    @property
    def pending(self) -> bool:
        """Whether a batch is waiting to be taken."""
        return self._batch is not None

    @property
    def is_open(self) -> bool:
        """Whether the next ``put`` can proceed without waiting."""
        return self._open

    async def put(self, batch: FrameBatch) -> int:
        while not self._open:
            await self._opened.wait()
        self._open = False
        self._opened.clear()
        self._cycle += 1
        self._batch = batch
        self._filled.set()
        return self._cycle

    async def take(self) -> Tuple[int, FrameBatch]:
        while self._batch is None:
            await self._filled.wait()
        batch = self._batch
        self._batch = None
        self._filled.clear()
        return self._cycle, batch

    def reset(self, ticket: int) -> None:
        """Reopen the slot once the batch for ``ticket`` is fully handled."""

        if ticket != self._cycle or self._open or self._batch is not None:
            raise RuntimeError(
                f"Stale reset for cycle {ticket} (current cycle {self._cycle})"
            )
        self._open = True
        self._opened.set()
        LOGGER.debug("Handoff slot reset after cycle %d", ticket)
