"""Table definition for persisted samples."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, MetaData, Numeric, Table

metadata = MetaData()

# Column names follow the existing database, "exaustairtemp" included.
logs_table = Table(
    "logs",
    metadata,
    Column("datetime", DateTime(timezone=False), primary_key=True),
    Column("extractairtemp", Numeric(5, 1), nullable=False),
    Column("exaustairtemp", Numeric(5, 1), nullable=False),
    Column("outdoorairtemp", Numeric(5, 1), nullable=False),
    Column("supplyairtemp", Numeric(5, 1), nullable=False),
    Column("co2", Integer, nullable=False),
    Column("humidity", Integer, nullable=False),
)
