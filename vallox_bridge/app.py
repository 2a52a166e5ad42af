"""Main application entry-point for vallox-bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from enum import Enum
from typing import Optional

from .adapters import ValloxClient
from .config import BridgeConfig, load_config
from .core import BatchSlot
from .errors import StorageUnavailable
from .health import HEALTH_ENDPOINT, STORAGE, HealthReporter, HealthServer
from .logging import configure_logging
from .poller import PollPipeline
from .processor import ProcessingStage
from .storage import SampleSink

LOGGER = logging.getLogger(__name__)


class BridgeState(str, Enum):
    COLD_START = "cold_start"
    PREFLIGHT = "preflight"
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


class BridgeApp:
    """Coordinates startup and shutdown of the two pipeline stages.

    The poll pipeline (network side) and the processing stage (decode and
    persist side) run as separate tasks sharing one :class:`BatchSlot`.
    Storage must pass a pre-flight version query before either starts.
    The device client and sink can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        client: Optional[ValloxClient] = None,
        sink: Optional[SampleSink] = None,
    ) -> None:
        self._config = config or load_config()
        self._client = client or ValloxClient(self._config.device)
        self._sink = sink or SampleSink(self._config.storage)
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._slot = BatchSlot()
        self._poller = PollPipeline(
            self._client,
            self._slot,
            poll_interval_seconds=self._config.device.poll_interval_seconds,
            max_pages=self._config.device.max_pages,
            health=self._health,
        )
        self._processor = ProcessingStage(self._slot, self._sink, health=self._health)
        self._health.track("poller", self._poller.stats)
        self._health.track("processor", self._processor.stats)
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = BridgeState.COLD_START

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def poller(self) -> PollPipeline:
        return self._poller

    @property
    def processor(self) -> ProcessingStage:
        return self._processor

    @property
    def health(self) -> HealthReporter:
        return self._health

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> None:
        """Run until shutdown is requested.

        Raises :class:`StorageUnavailable` if the pre-flight check fails;
        nothing is polled in that case.
        """

        self._shutdown_event = asyncio.Event()
        LOGGER.info("vallox-bridge starting with config: %s", self._config.path)
        LOGGER.info(
            "Timeout between requests - %.0fs", self._config.device.poll_interval_seconds
        )

        try:
            await self._preflight()
            await self._start_health_server()
            self._processor.start()
            await self._poller.start()
            await self._transition_state(BridgeState.ACTIVE, detail="polling")

            try:
                await self._shutdown_event.wait()
            except asyncio.CancelledError:
                LOGGER.info("vallox-bridge received shutdown signal")
                raise
        finally:
            await self._stop_services()

    @classmethod
    def start(cls, config: Optional[BridgeConfig] = None) -> int:
        """Run the bridge in a fresh event loop; returns a process exit code."""

        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance._run_with_signals())
        except KeyboardInterrupt:
            LOGGER.info("vallox-bridge received shutdown signal")
        except StorageUnavailable as exc:
            LOGGER.critical("Database is not accessible! Exit: %s", exc)
            return 1
        return 0

    async def _run_with_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.request_shutdown)
        await self.run()

    async def _preflight(self) -> None:
        await self._transition_state(BridgeState.PREFLIGHT, detail="checking storage")
        try:
            await self._sink.connect()
            version = await self._sink.check_health()
            if self._config.storage.create_schema:
                await self._sink.ensure_schema()
        except StorageUnavailable as exc:
            await self._health.update(STORAGE, False, str(exc))
            raise
        LOGGER.info("Database - OK (%s)", version)
        await self._health.update(STORAGE, True, None)

    async def _start_health_server(self) -> None:
        service = self._config.service
        if not service.health_enabled or service.health_port <= 0:
            return

        server = HealthServer(self._health, service.health_host, service.health_port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update(HEALTH_ENDPOINT, False, str(exc))
        else:
            self._health_server = server
            await self._health.update(HEALTH_ENDPOINT, True, None)

    async def _stop_services(self) -> None:
        if self._state is BridgeState.STOPPED:
            return
        await self._transition_state(BridgeState.STOPPING, detail="shutdown requested")
        timeout = self._config.service.shutdown_timeout_seconds

        for name, stop in (
            ("poll pipeline", self._poller.stop),
            ("processing stage", self._processor.stop),
        ):
            try:
                await asyncio.wait_for(stop(), timeout=timeout)
            except asyncio.TimeoutError:
                LOGGER.error("Timed out stopping %s after %.1fs", name, timeout)

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        await self._sink.close()
        await self._transition_state(BridgeState.STOPPED, detail="stopped")
        LOGGER.info(
            "vallox-bridge stopped (%d batches, %d rows written)",
            self._processor.batches_processed,
            self._processor.rows_written,
        )

    async def _transition_state(
        self, state: BridgeState, *, detail: Optional[str] = None
    ) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.info(
            "Bridge state transition %s -> %s (%s)",
            previous.value,
            state.value,
            detail or state.value,
        )
        await self._health.set_bridge_state(
            state.value, healthy=state is BridgeState.ACTIVE, detail=detail
        )
