"""Relational persistence for aggregated samples."""

from .schema import logs_table, metadata
from .sink import SampleSink

__all__ = ["SampleSink", "logs_table", "metadata"]
