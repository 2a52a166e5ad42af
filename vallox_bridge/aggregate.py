"""Fold per-sensor log records into one sample per timestamp."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from .core.models import Sample, SensorKind, SensorRecord
from .errors import ConversionError

LOGGER = logging.getLogger(__name__)

# NUMERIC(5, 1) and INTEGER columns of the logs table.
TEMPERATURE_LIMIT = Decimal("10000")
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_FIELD_BY_KIND = {
    SensorKind.EXTRACT_AIR_TEMP: "extract_air_temp",
    SensorKind.EXHAUST_AIR_TEMP: "exhaust_air_temp",
    SensorKind.OUTDOOR_AIR_TEMP: "outdoor_air_temp",
    SensorKind.SUPPLY_AIR_TEMP: "supply_air_temp",
    SensorKind.CO2: "co2",
    SensorKind.HUMIDITY: "humidity",
}


def aggregate(records: Iterable[SensorRecord]) -> List[Sample]:
    """Group records by timestamp and build one :class:`Sample` per group.

    Groups may span pages. Within a group the first record of each kind is
    kept and later ones are dropped. Kinds that never appear leave the
    sample's zero default. Records of unknown kind still open a group.
    """

    groups: Dict[datetime, Dict[SensorKind, SensorRecord]] = {}
    for record in records:
        readings = groups.setdefault(record.timestamp, {})
        if record.kind is SensorKind.UNKNOWN:
            continue
        if record.kind in readings:
            LOGGER.debug(
                "Dropping duplicate %s reading at %s (raw=%d)",
                record.kind.value,
                record.timestamp.isoformat(),
                record.raw_value,
            )
            continue
        readings[record.kind] = record

    return [_build_sample(timestamp, readings) for timestamp, readings in groups.items()]


def _build_sample(
    timestamp: datetime, readings: Dict[SensorKind, SensorRecord]
) -> Sample:
    fields: Dict[str, object] = {}
    for kind, record in readings.items():
        fields[_FIELD_BY_KIND[kind]] = _checked_value(record)
    return Sample(timestamp=timestamp, **fields)


def _checked_value(record: SensorRecord) -> object:
    value = record.value
    if record.kind.is_temperature:
        if not isinstance(value, Decimal) or abs(value) >= TEMPERATURE_LIMIT:
            raise ConversionError(
                f"{record.kind.value} value {value!r} at {record.timestamp} "
                "does not fit NUMERIC(5, 1)"
            )
        return value
    if not isinstance(value, int) or not INT32_MIN <= value <= INT32_MAX:
        raise ConversionError(
            f"{record.kind.value} value {value!r} at {record.timestamp} "
            "does not fit INTEGER"
        )
    return value
