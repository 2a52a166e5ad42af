"""Extraction of 8-byte sensor log records from a data frame.

Record layout::

    b0  sensor code (0xFF terminates the page)
    b1  minute
    b2  hour
    b3  day
    b4  month
    b5  year - 2000
    b6  value, low byte   \\ signed 16-bit
    b7  value, high byte  /
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterator, List, Optional

from ..core.models import SensorKind, SensorRecord
from ..errors import MalformedFrame
from .codec import Buffer, decode_int16_le
from .frames import PAGE_SIZE

RECORD_SIZE = 8
RECORDS_PER_PAGE = PAGE_SIZE // RECORD_SIZE
TERMINATOR = 0xFF

SENSOR_CODES = {
    0: SensorKind.EXTRACT_AIR_TEMP,
    1: SensorKind.EXHAUST_AIR_TEMP,
    2: SensorKind.OUTDOOR_AIR_TEMP,
    3: SensorKind.SUPPLY_AIR_TEMP,
    4: SensorKind.CO2,
    5: SensorKind.HUMIDITY,
}


def kind_for_code(code: int) -> Optional[SensorKind]:
    return SENSOR_CODES.get(code)


def decode_record(chunk: Buffer) -> Optional[SensorRecord]:
    """Decode one record; ``None`` marks the end of the page."""

    if len(chunk) != RECORD_SIZE:
        raise MalformedFrame(f"Record is {len(chunk)} bytes, expected {RECORD_SIZE}")

    code = chunk[0]
    if code == TERMINATOR:
        return None

    kind = kind_for_code(code) or SensorKind.UNKNOWN
    try:
        timestamp = datetime(
            2000 + chunk[5], chunk[4], chunk[3], chunk[2], chunk[1], 0
        )
    except ValueError as exc:
        raise MalformedFrame(
            f"Record has invalid timestamp bytes {bytes(chunk[1:6]).hex(' ')}: {exc}"
        ) from exc

    return SensorRecord(
        kind=kind, timestamp=timestamp, raw_value=decode_int16_le(chunk, 6)
    )


def iter_records(data: Buffer, page_count: int) -> Iterator[SensorRecord]:
    """Yield the records of every page in order.

    A terminator ends its own page only; the next page is still read.
    """

    expected = page_count * PAGE_SIZE
    if len(data) != expected:
        raise MalformedFrame(
            f"Data frame is {len(data)} bytes, expected {expected} for {page_count} pages"
        )

    view = memoryview(data)
    for page_start in range(0, expected, PAGE_SIZE):
        for offset in range(page_start, page_start + PAGE_SIZE, RECORD_SIZE):
            record = decode_record(view[offset : offset + RECORD_SIZE])
            if record is None:
                break
            yield record


def extract_records(data: Buffer, page_count: int) -> List[SensorRecord]:
    return list(iter_records(data, page_count))
