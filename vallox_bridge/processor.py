"""Decode, aggregate and persist batches taken from the handoff slot."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional

from .aggregate import aggregate
from .core import BatchSlot, Sample
from .errors import ConversionError, MalformedFrame, StorageUnavailable
from .health import PIPELINE, STORAGE, HealthReporter
from .protocol.frames import FrameBatch
from .protocol.records import extract_records

if TYPE_CHECKING:
    from .storage import SampleSink

LOGGER = logging.getLogger(__name__)


def decode_batch(batch: FrameBatch) -> List[Sample]:
    """Turn a validated frame pair into samples without touching storage."""

    records = extract_records(batch.data, batch.page_count)
    samples = aggregate(records)
    LOGGER.debug(
        "Decoded %d records into %d samples from %d pages",
        len(records),
        len(samples),
        batch.page_count,
    )
    return samples


class ProcessingStage:
    """Consumer side of the handoff slot.

    The slot is reset only after the batch's write has finished or failed,
    so at most one batch is ever being decoded or written.
    """

    def __init__(
        self,
        slot: BatchSlot,
        sink: SampleSink,
        *,
        health: Optional[HealthReporter] = None,
    ) -> None:
        self._slot = slot
        self._sink = sink
        self._health = health
        self._task: Optional[asyncio.Task[None]] = None

        self.batches_processed = 0
        self.batches_failed = 0
        self.rows_written = 0
        self.last_batch_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> Dict[str, object]:
        last = self.last_batch_at
        return {
            "running": self.running,
            "batchesProcessed": self.batches_processed,
            "batchesFailed": self.batches_failed,
            "rowsWritten": self.rows_written,
            "lastBatchAt": last.isoformat(timespec="seconds") if last else None,
        }

    def start(self) -> None:
        if self.running:
            LOGGER.warning("Processing stage already running")
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            ticket, batch = await self._slot.take()
            try:
                await self.process(batch)
            except Exception as exc:
                self.batches_failed += 1
                LOGGER.exception(
                    "Unexpected error processing batch received at %s", batch.received_at
                )
                await self._report(False, f"unexpected error: {exc!r}")
            finally:
                self._slot.reset(ticket)

    async def process(self, batch: FrameBatch) -> int:
        """Handle one batch; returns the number of rows written.

        Decode and storage failures end the batch here and are logged; they
        never stop the stage.
        """

        LOGGER.info("Parsing data from %d pages", batch.page_count)
        try:
            samples = decode_batch(batch)
        except (MalformedFrame, ConversionError) as exc:
            LOGGER.warning("Discarding batch received at %s: %s", batch.received_at, exc)
            await self._report(False, str(exc))
            return 0

        try:
            written = await self._sink.upsert(samples)
        except StorageUnavailable as exc:
            LOGGER.critical("Error saving %d samples, batch lost: %s", len(samples), exc)
            await self._report(False, str(exc), component=STORAGE)
            return 0

        self.batches_processed += 1
        self.rows_written += written
        self.last_batch_at = datetime.now(timezone.utc)
        await self._report(True, f"last batch: {written} new rows")
        await self._report(True, None, component=STORAGE)
        return written

    async def _report(
        self, healthy: bool, detail: Optional[str], *, component: str = PIPELINE
    ) -> None:
        if self._health is not None:
            await self._health.update(component, healthy, detail)
