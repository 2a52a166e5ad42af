import asyncio
from datetime import datetime

import pytest

from fakes import FakeClient
from protocol_helpers import data_frame, full_minute, metadata_frame, page
from vallox_bridge.core import BatchSlot
from vallox_bridge.errors import SizeMismatch, UnexpectedFrame
from vallox_bridge.health import HealthReporter
from vallox_bridge.poller import PollPipeline, PollState
from vallox_bridge.protocol import PAGE_SIZE, POLL_REQUEST


def _pipeline(client: FakeClient, slot: BatchSlot, **kwargs) -> PollPipeline:
    kwargs.setdefault("poll_interval_seconds", 60.0)
    kwargs.setdefault("max_pages", 8)
    return PollPipeline(client, slot, **kwargs)


def _one_page_pair() -> tuple[bytes, bytes]:
    when = datetime(2024, 3, 14, 12, 30)
    return metadata_frame(1), data_frame([page(full_minute(when))])


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        PollPipeline(FakeClient(), BatchSlot(), poll_interval_seconds=0, max_pages=8)


@pytest.mark.asyncio
async def test_accept_frame_pairs_metadata_and_data() -> None:
    pipeline = _pipeline(FakeClient(), BatchSlot())
    metadata, data = _one_page_pair()

    assert pipeline.accept_frame(metadata) is None
    assert pipeline.state is PollState.AWAITING_DATA

    batch = pipeline.accept_frame(data)

    assert batch is not None
    assert batch.page_count == 1
    assert batch.data == data
    assert pipeline.state is PollState.HANDOFF


@pytest.mark.asyncio
async def test_accept_frame_rejects_third_frame_during_handoff() -> None:
    pipeline = _pipeline(FakeClient(), BatchSlot())
    metadata, data = _one_page_pair()
    pipeline.accept_frame(metadata)
    pipeline.accept_frame(data)

    with pytest.raises(UnexpectedFrame):
        pipeline.accept_frame(metadata)


@pytest.mark.asyncio
async def test_accept_frame_rejects_size_mismatch() -> None:
    pipeline = _pipeline(FakeClient(), BatchSlot())
    pipeline.accept_frame(metadata_frame(2))

    with pytest.raises(SizeMismatch):
        pipeline.accept_frame(bytes(PAGE_SIZE))


@pytest.mark.asyncio
async def test_connected_sends_poll_request_immediately() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot())
    await pipeline.start()
    assert pipeline.state is PollState.CONNECTING

    await client.connect()
    await asyncio.sleep(0)

    try:
        assert client.sent == [POLL_REQUEST]
        assert pipeline.state is PollState.AWAITING_METADATA
    finally:
        await pipeline.stop()

    assert client.stopped
    assert pipeline.state is PollState.DISCONNECTED


@pytest.mark.asyncio
async def test_valid_pair_is_handed_off() -> None:
    client = FakeClient()
    slot = BatchSlot()
    health = HealthReporter()
    pipeline = _pipeline(client, slot, health=health)
    await pipeline.start()
    await client.connect()
    metadata, data = _one_page_pair()

    try:
        await client.on_frame(metadata)
        await client.on_frame(data)

        assert pipeline.cycles_handed_off == 1
        assert pipeline.state is PollState.IDLE
        ticket, batch = await asyncio.wait_for(slot.take(), timeout=1.0)
        assert ticket == 1
        assert batch.data == data
        snapshot = await health.snapshot()
        assert snapshot["status"] == "ok"
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_size_mismatch_discards_cycle_and_resyncs() -> None:
    client = FakeClient()
    slot = BatchSlot()
    health = HealthReporter()
    pipeline = _pipeline(client, slot, health=health)
    await pipeline.start()
    await client.connect()

    try:
        await client.on_frame(metadata_frame(2))
        await client.on_frame(bytes(PAGE_SIZE))

        assert pipeline.cycles_rejected == 1
        assert pipeline.state is PollState.IDLE
        assert not slot.pending
        snapshot = await health.snapshot()
        assert snapshot["status"] == "degraded"

        # The next cycle still works.
        metadata, data = _one_page_pair()
        await client.on_frame(metadata)
        await client.on_frame(data)
        assert pipeline.cycles_handed_off == 1
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_short_metadata_frame_discards_cycle() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot())
    await pipeline.start()
    await client.connect()

    try:
        await client.on_frame(b"\x03\x00")
        await client.on_frame(bytes(PAGE_SIZE))
        assert pipeline.cycles_rejected == 1
        assert pipeline.state is PollState.IDLE
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_oversized_page_count_is_rejected() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot(), max_pages=1)
    await pipeline.start()
    await client.connect()

    try:
        await client.on_frame(metadata_frame(2))
        await client.on_frame(bytes(2 * PAGE_SIZE))
        assert pipeline.cycles_rejected == 1
        assert pipeline.cycles_handed_off == 0
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_handoff_waits_while_previous_batch_is_processed() -> None:
    client = FakeClient()
    slot = BatchSlot()
    pipeline = _pipeline(client, slot)
    await pipeline.start()
    await client.connect()
    metadata, data = _one_page_pair()

    try:
        await client.on_frame(metadata)
        await client.on_frame(data)
        ticket, _ = await slot.take()

        await client.on_frame(metadata)
        second = asyncio.create_task(client.on_frame(data))
        await asyncio.sleep(0.01)

        assert not second.done()
        assert pipeline.state is PollState.HANDOFF

        slot.reset(ticket)
        await asyncio.wait_for(second, timeout=1.0)
        assert pipeline.cycles_handed_off == 2
        assert pipeline.state is PollState.IDLE
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_data_frame_arriving_across_a_tick_completes_the_cycle() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot(), poll_interval_seconds=0.3)
    await pipeline.start()
    await client.connect()
    metadata, data = _one_page_pair()

    try:
        await asyncio.sleep(0.2)
        await client.on_frame(metadata)
        await asyncio.sleep(0.2)  # one tick passes while the data frame is due
        assert pipeline.state is PollState.AWAITING_DATA
        assert client.sent == [POLL_REQUEST]

        await client.on_frame(data)
        assert pipeline.cycles_handed_off == 1
        assert pipeline.cycles_rejected == 0
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_stray_frame_after_handoff_does_not_stop_polling() -> None:
    client = FakeClient()
    health = HealthReporter()
    pipeline = _pipeline(client, BatchSlot(), poll_interval_seconds=0.02, health=health)
    await pipeline.start()
    await client.connect()
    metadata, data = _one_page_pair()

    try:
        await client.on_frame(metadata)
        await client.on_frame(data)
        await client.on_frame(metadata)  # third frame of the same reply
        assert pipeline.state is PollState.AWAITING_DATA
        sent_before = len(client.sent)

        await asyncio.sleep(0.2)

        assert len(client.sent) > sent_before
        assert pipeline.cycles_rejected >= 1
        assert pipeline.state is PollState.AWAITING_METADATA
        snapshot = await health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        assert components["device"]["healthy"] is False
        assert pipeline.stats()["cyclesRejected"] == pipeline.cycles_rejected
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_timer_repolls_when_no_reply_arrives() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot(), poll_interval_seconds=0.02)
    await pipeline.start()
    await client.connect()

    try:
        await asyncio.sleep(0.1)
        assert len(client.sent) >= 2
        assert set(client.sent) == {POLL_REQUEST}
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_disconnect_drops_partial_pair_and_stops_timer() -> None:
    client = FakeClient()
    pipeline = _pipeline(client, BatchSlot(), poll_interval_seconds=0.02)
    await pipeline.start()
    await client.connect()
    await client.on_frame(metadata_frame(1))

    try:
        await client.disconnect(ConnectionResetError("reset"))
        assert pipeline.state is PollState.CONNECTING
        sent = len(client.sent)
        await asyncio.sleep(0.06)
        assert len(client.sent) == sent

        # After reconnecting the first frame is treated as metadata again.
        await client.connect()
        metadata, data = _one_page_pair()
        await client.on_frame(metadata)
        await client.on_frame(data)
        assert pipeline.cycles_handed_off == 1
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_frame_during_handoff_resyncs_to_awaiting_metadata() -> None:
    client = FakeClient()
    slot = BatchSlot()
    pipeline = _pipeline(client, slot)
    await pipeline.start()
    await client.connect()
    metadata, data = _one_page_pair()

    try:
        await client.on_frame(metadata)
        await client.on_frame(data)
        ticket, _ = await slot.take()

        await client.on_frame(metadata)
        blocked = asyncio.create_task(client.on_frame(data))
        await asyncio.sleep(0.01)
        assert pipeline.state is PollState.HANDOFF

        await client.on_frame(metadata)

        assert pipeline.cycles_rejected == 1
        assert pipeline.state is PollState.AWAITING_METADATA

        slot.reset(ticket)
        await asyncio.wait_for(blocked, timeout=1.0)
        assert pipeline.cycles_handed_off == 2
    finally:
        await pipeline.stop()
