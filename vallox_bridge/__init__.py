"""Bridge between Vallox ventilation telemetry and a relational store."""

__version__ = "0.1.0"
