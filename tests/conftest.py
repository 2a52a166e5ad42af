from pathlib import Path

import pytest
import pytest_asyncio

from vallox_bridge.config import StorageConfig
from vallox_bridge.storage import SampleSink


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    """SQLite stand-in for PostgreSQL; supports the same ON CONFLICT DO NOTHING."""
    return StorageConfig(
        url=f"sqlite+aiosqlite:///{tmp_path / 'vallox.db'}", create_schema=True
    )


@pytest_asyncio.fixture
async def sink(storage_config: StorageConfig):
    sink = SampleSink(storage_config)
    await sink.connect()
    await sink.ensure_schema()
    try:
        yield sink
    finally:
        await sink.close()
