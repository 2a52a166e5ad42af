"""Frames in through the poll pipeline, rows out of the database."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from fakes import FakeClient
from protocol_helpers import TERMINATOR_RECORD, data_frame, full_minute, page, record
from vallox_bridge.core import BatchSlot
from vallox_bridge.poller import PollPipeline
from vallox_bridge.processor import ProcessingStage
from vallox_bridge.protocol import PAGE_SIZE
from vallox_bridge.storage import SampleSink, logs_table

WHEN = datetime(2024, 3, 14, 12, 30)
METADATA = bytes.fromhex("0300F3000200")


async def _run_cycle(sink: SampleSink, frames: list[bytes]) -> PollPipeline:
    client = FakeClient()
    slot = BatchSlot()
    pipeline = PollPipeline(client, slot, poll_interval_seconds=60.0, max_pages=8)
    stage = ProcessingStage(slot, sink)
    stage.start()
    await pipeline.start()
    await client.connect()
    try:
        for frame in frames:
            await client.on_frame(frame)
        # Waits until the stage has reset the slot after its write.
        for _ in range(100):
            if slot.is_open and not slot.pending:
                break
            await asyncio.sleep(0.01)
    finally:
        await pipeline.stop()
        await stage.stop()
    return pipeline


@pytest.mark.asyncio
async def test_two_page_pair_produces_one_row(sink: SampleSink) -> None:
    first_page = page([*full_minute(WHEN), TERMINATOR_RECORD])
    data = data_frame([first_page, page()])
    assert len(data) == 2 * PAGE_SIZE

    pipeline = await _run_cycle(sink, [METADATA, data])

    assert pipeline.cycles_handed_off == 1
    async with sink.engine.connect() as conn:
        rows = (await conn.execute(select(logs_table))).mappings().all()

    assert len(rows) == 1
    row = rows[0]
    assert row["datetime"] == WHEN
    assert row["extractairtemp"] == Decimal("25.0")
    assert row["exaustairtemp"] == Decimal("23.0")
    assert row["outdoorairtemp"] == Decimal("0.0")
    assert row["supplyairtemp"] == Decimal("19.0")
    assert row["co2"] == 650
    assert row["humidity"] == 45


@pytest.mark.asyncio
async def test_repeated_cycle_does_not_duplicate_rows(sink: SampleSink) -> None:
    data = data_frame([page(full_minute(WHEN)), page()])

    await _run_cycle(sink, [METADATA, data])
    await _run_cycle(sink, [METADATA, data])

    assert await sink.count() == 1


@pytest.mark.asyncio
async def test_size_mismatch_writes_nothing(sink: SampleSink) -> None:
    data = data_frame([page(full_minute(WHEN))])

    pipeline = await _run_cycle(sink, [METADATA, data])

    assert pipeline.cycles_rejected == 1
    assert pipeline.cycles_handed_off == 0
    assert await sink.count() == 0


@pytest.mark.asyncio
async def test_partial_minute_fills_missing_fields_with_zero(sink: SampleSink) -> None:
    data = data_frame([page([record(4, WHEN, 800)]), page()])

    await _run_cycle(sink, [METADATA, data])

    async with sink.engine.connect() as conn:
        row = (await conn.execute(select(logs_table))).mappings().one()

    assert row["co2"] == 800
    assert row["humidity"] == 0
    assert row["extractairtemp"] == Decimal("0.0")
