"""Core primitives for vallox-bridge."""

from .handoff import BatchSlot
from .models import Sample, SensorKind, SensorRecord, kelvin_centi_to_celsius

__all__ = [
    "BatchSlot",
    "Sample",
    "SensorKind",
    "SensorRecord",
    "kelvin_centi_to_celsius",
]
