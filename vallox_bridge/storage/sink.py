"""Idempotent persistence of samples into PostgreSQL.

Rows are keyed by the sample timestamp. Inserting a timestamp that already
exists is a no-op, so the first write for a minute wins and re-reading the
same log pages from the device never duplicates rows.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..config import StorageConfig
from ..core.models import Sample
from ..errors import StorageUnavailable
from .schema import logs_table, metadata

LOGGER = logging.getLogger(__name__)

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit.
BATCH_ROWS = 500

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}

_VERSION_QUERIES = {
    "postgresql": "SELECT version()",
    "sqlite": "SELECT sqlite_version()",
}


class SampleSink:
    """Writes :class:`Sample` rows through an async SQLAlchemy engine."""

    def __init__(
        self, config: StorageConfig, *, engine: Optional[AsyncEngine] = None
    ) -> None:
        self.config = config
        self._engine: Optional[AsyncEngine] = engine
        self._owns_engine = engine is None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StorageUnavailable("Storage engine not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        try:
            self._engine = create_async_engine(
                self.config.url,
                echo=self.config.echo,
                pool_pre_ping=True,
            )
        except (SQLAlchemyError, ImportError, ValueError) as exc:
            raise StorageUnavailable(f"Invalid storage url: {exc}") from exc
        if self._engine.dialect.name not in _INSERTS:
            dialect = self._engine.dialect.name
            await self._engine.dispose()
            self._engine = None
            raise StorageUnavailable(f"Unsupported storage dialect: {dialect}")
        self._owns_engine = True

    async def close(self) -> None:
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
        self._engine = None

    async def check_health(self) -> str:
        """Return the server version string, or raise :class:`StorageUnavailable`."""

        engine = self.engine
        query = _VERSION_QUERIES.get(engine.dialect.name, "SELECT version()")
        try:
            async with engine.connect() as conn:
                version = (await conn.execute(text(query))).scalar()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Storage health check failed: {exc}") from exc
        if not version:
            raise StorageUnavailable("Storage health check returned no version")
        return str(version)

    async def ensure_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Failed to create schema: {exc}") from exc

    async def upsert(self, samples: Sequence[Sample]) -> int:
        """Insert samples in one transaction, skipping existing timestamps.

        Returns the number of rows actually inserted.
        """

        if not samples:
            return 0

        engine = self.engine
        insert = _INSERTS[engine.dialect.name]
        rows = [sample.as_row() for sample in samples]
        written = 0
        try:
            async with engine.begin() as conn:
                for start in range(0, len(rows), BATCH_ROWS):
                    stmt = (
                        insert(logs_table)
                        .values(rows[start : start + BATCH_ROWS])
                        .on_conflict_do_nothing(index_elements=["datetime"])
                    )
                    result = await conn.execute(stmt)
                    written += max(result.rowcount, 0)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Failed to write {len(rows)} samples: {exc}") from exc

        LOGGER.info(
            "Saved %d of %d samples (%d already stored)",
            written,
            len(rows),
            len(rows) - written,
        )
        return written

    async def count(self) -> int:
        """Number of stored rows."""

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(func.count()).select_from(logs_table)
                )
                return int(result.scalar() or 0)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"Failed to count samples: {exc}") from exc
