"""Poll request/response cycle and handoff to the processing stage.

Each cycle sends one poll request and expects exactly two binary frames
back: the metadata frame, then a data frame of ``page_count`` pages. The
validated pair is pushed into the shared :class:`BatchSlot`; while the
processing stage still holds the previous batch that push waits, which in
turn stops the transport from reading further frames.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

from .core import BatchSlot
from .errors import DeviceNotConnected, MalformedFrame, SizeMismatch, UnexpectedFrame
from .health import DEVICE, HealthReporter
from .protocol.frames import (
    POLL_REQUEST,
    FrameBatch,
    decode_metadata,
    validate_data_frame,
)

if TYPE_CHECKING:
    from .adapters import ValloxClient

LOGGER = logging.getLogger(__name__)


class PollState(str, Enum):
    """Where the pipeline is within a poll cycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"
    AWAITING_METADATA = "awaiting_metadata"
    AWAITING_DATA = "awaiting_data"
    HANDOFF = "handoff"


# States in which a timer tick may (re)send the poll request.
_POLLABLE_STATES = frozenset({PollState.IDLE, PollState.AWAITING_METADATA})


class PollPipeline:
    """Drives the poll cycle for one device connection."""

    def __init__(
        self,
        client: ValloxClient,
        slot: BatchSlot,
        *,
        poll_interval_seconds: float,
        max_pages: int,
        health: Optional[HealthReporter] = None,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        self._client = client
        self._slot = slot
        self._poll_interval = poll_interval_seconds
        self._max_pages = max_pages
        self._health = health

        self._state = PollState.DISCONNECTED
        self._metadata_frame: Optional[bytes] = None
        self._metadata_at = 0.0
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

        self.cycles_handed_off = 0
        self.cycles_rejected = 0

    @property
    def state(self) -> PollState:
        return self._state

    def stats(self) -> Dict[str, object]:
        return {
            "state": self._state.value,
            "cyclesHandedOff": self.cycles_handed_off,
            "cyclesRejected": self.cycles_rejected,
        }

    async def start(self) -> None:
        self._stop_event.clear()
        self._transition(PollState.CONNECTING)
        await self._client.start(
            self._on_frame,
            on_connected=self._on_connected,
            on_disconnected=self._on_disconnected,
        )

    async def stop(self) -> None:
        self._stop_event.set()
        await self._cancel_timer()
        await self._client.stop()
        self._metadata_frame = None
        self._transition(PollState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Frame assembly
    # ------------------------------------------------------------------
    def accept_frame(self, frame: bytes) -> Optional[FrameBatch]:
        """Advance the cycle with one inbound frame.

        Returns the validated batch once both frames are in, otherwise
        ``None``. Raises :class:`UnexpectedFrame` while a completed pair is
        still being handed off, and :class:`MalformedFrame` or
        :class:`SizeMismatch` when the pair fails validation.
        """

        if self._state is PollState.HANDOFF:
            raise UnexpectedFrame(
                f"Received a {len(frame)} byte frame while the previous pair is in handoff"
            )

        if self._metadata_frame is None:
            self._metadata_frame = bytes(frame)
            self._metadata_at = asyncio.get_running_loop().time()
            self._transition(PollState.AWAITING_DATA)
            return None

        metadata_frame = self._metadata_frame
        self._metadata_frame = None
        metadata = decode_metadata(metadata_frame)
        validate_data_frame(metadata, frame, max_pages=self._max_pages)
        self._transition(PollState.HANDOFF)
        return FrameBatch(metadata=metadata, data=bytes(frame))

    def _resync(self, state: PollState) -> None:
        self._metadata_frame = None
        self._transition(state)

    async def _on_frame(self, frame: bytes) -> None:
        try:
            batch = self.accept_frame(frame)
        except UnexpectedFrame as exc:
            self.cycles_rejected += 1
            LOGGER.warning("Protocol desynchronised, dropping cycle: %s", exc)
            self._resync(PollState.AWAITING_METADATA)
            await self._report(False, str(exc))
            return
        except (MalformedFrame, SizeMismatch) as exc:
            self.cycles_rejected += 1
            LOGGER.warning("Discarding poll cycle: %s", exc)
            self._resync(PollState.IDLE)
            await self._report(False, str(exc))
            return

        if batch is None:
            return

        LOGGER.info(
            "Received frame pair (pages=%d, registers=0x%04X/0x%04X); handing off",
            batch.page_count,
            batch.metadata.register_a,
            batch.metadata.register_b,
        )
        ticket = await self._slot.put(batch)
        self.cycles_handed_off += 1
        LOGGER.debug("Cycle %d handed off", ticket)
        if self._state is PollState.HANDOFF:
            self._transition(PollState.IDLE)
        await self._report(True, None)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def _on_connected(self) -> None:
        self._metadata_frame = None
        self._transition(PollState.IDLE)
        await self._cancel_timer()
        self._timer_task = asyncio.create_task(self._poll_loop())

    async def _on_disconnected(self, error: Optional[BaseException]) -> None:
        await self._cancel_timer()
        if self._metadata_frame is not None:
            LOGGER.warning("Connection lost mid-cycle; dropping partial frame pair")
        self._resync(PollState.DISCONNECTED)
        await self._report(False, f"disconnected ({error})" if error else "disconnected")
        if not self._stop_event.is_set():
            self._transition(PollState.CONNECTING)

    async def _poll_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._stop_event.is_set():
            if (
                self._state is PollState.AWAITING_DATA
                and loop.time() - self._metadata_at >= self._poll_interval
            ):
                self.cycles_rejected += 1
                LOGGER.warning(
                    "No data frame within %.1fs of the metadata frame; dropping cycle",
                    self._poll_interval,
                )
                self._resync(PollState.AWAITING_METADATA)
                await self._report(False, "data frame timed out")

            if self._state in _POLLABLE_STATES:
                self._resync(PollState.AWAITING_METADATA)
                try:
                    await self._client.send(POLL_REQUEST)
                except DeviceNotConnected as exc:
                    LOGGER.debug("Skipping poll: %s", exc)
                else:
                    LOGGER.info("Sent poll request")
            else:
                LOGGER.debug("Skipping poll tick while %s", self._state.value)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                continue

    async def _cancel_timer(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _transition(self, state: PollState) -> None:
        if state is self._state:
            return
        LOGGER.debug("Poll state %s -> %s", self._state.value, state.value)
        self._state = state

    async def _report(self, healthy: bool, detail: Optional[str]) -> None:
        if self._health is not None:
            await self._health.update(DEVICE, healthy, detail)
