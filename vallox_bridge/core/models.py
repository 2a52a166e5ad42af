"""Domain models for sensor readings and aggregated samples."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Optional, Union

KELVIN_OFFSET = Decimal("273.15")
ONE_DECIMAL = Decimal("0.1")


class SensorKind(str, Enum):
    """Sensor reported by a log record."""

    EXTRACT_AIR_TEMP = "extract_air_temp"
    EXHAUST_AIR_TEMP = "exhaust_air_temp"
    OUTDOOR_AIR_TEMP = "outdoor_air_temp"
    SUPPLY_AIR_TEMP = "supply_air_temp"
    CO2 = "co2"
    HUMIDITY = "humidity"
    UNKNOWN = "unknown"

    @property
    def is_temperature(self) -> bool:
        return self in _TEMPERATURE_KINDS


_TEMPERATURE_KINDS = frozenset(
    {
        SensorKind.EXTRACT_AIR_TEMP,
        SensorKind.EXHAUST_AIR_TEMP,
        SensorKind.OUTDOOR_AIR_TEMP,
        SensorKind.SUPPLY_AIR_TEMP,
    }
)


def kelvin_centi_to_celsius(raw_value: int) -> Decimal:
    """Convert hundredths of a kelvin to degrees Celsius, one decimal place.

    Halves round away from zero: 27320 -> 0.1, 27310 -> -0.1.
    """

    celsius = Decimal(raw_value) / 100 - KELVIN_OFFSET
    return celsius.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class SensorRecord:
    kind: SensorKind
    timestamp: datetime
    raw_value: int

    @property
    def value(self) -> Optional[Union[Decimal, int]]:
        """Reading in engineering units, ``None`` for unrecognised sensors."""

        if self.kind is SensorKind.UNKNOWN:
            return None
        if self.kind.is_temperature:
            return kelvin_centi_to_celsius(self.raw_value)
        return self.raw_value


@dataclass(frozen=True, slots=True)
class Sample:
    """All readings the device logged for one minute."""

    timestamp: datetime
    extract_air_temp: Decimal = Decimal("0.0")
    exhaust_air_temp: Decimal = Decimal("0.0")
    outdoor_air_temp: Decimal = Decimal("0.0")
    supply_air_temp: Decimal = Decimal("0.0")
    co2: int = 0
    humidity: int = 0

    def as_row(self) -> Dict[str, object]:
        return {
            "datetime": self.timestamp,
            "extractairtemp": self.extract_air_temp,
            "exaustairtemp": self.exhaust_air_temp,
            "outdoorairtemp": self.outdoor_air_temp,
            "supplyairtemp": self.supply_air_temp,
            "co2": self.co2,
            "humidity": self.humidity,
        }
