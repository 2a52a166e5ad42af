"""Health and progress reporting for the bridge, served at ``/healthz``."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)

DEVICE = "device"
STORAGE = "storage"
PIPELINE = "pipeline"
HEALTH_ENDPOINT = "health-endpoint"

StatsProvider = Callable[[], Dict[str, object]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Collects device, storage and pipeline health plus stage counters.

    Components report through :meth:`update`. The poll pipeline and the
    processing stage also register a stats provider, read on every
    :meth:`snapshot`, so counters such as rows written are always current.
    The bridge lifecycle state is kept apart from the components; anything
    but ``active`` marks the snapshot degraded.
    """

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._bridge_state: Optional[ComponentStatus] = None
        self._stats: Dict[str, StatsProvider] = {}
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            previous = self._status.get(name)
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )
        if previous is not None and previous.healthy != healthy:
            LOGGER.info(
                "%s is now %s%s",
                name,
                "healthy" if healthy else "unhealthy",
                f" ({detail})" if detail else "",
            )

    async def set_bridge_state(
        self, state: str, *, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._bridge_state = ComponentStatus(
                name=state, healthy=healthy, detail=detail
            )

    def track(self, name: str, provider: StatsProvider) -> None:
        """Include ``provider()`` under ``stats[name]`` in every snapshot."""

        self._stats[name] = provider

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._status.values()]
            bridge_state = self._bridge_state

        healthy = all(item["healthy"] for item in components)
        if bridge_state is not None and not bridge_state.healthy:
            healthy = False

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "components": components,
            "stats": {name: provider() for name, provider in self._stats.items()},
        }
        if bridge_state is not None:
            payload["bridgeState"] = {
                "state": bridge_state.name,
                "healthy": bridge_state.healthy,
                "detail": bridge_state.detail,
                "updatedAt": bridge_state.updated_at.isoformat(timespec="seconds"),
            }
        return payload


class HealthServer:
    """Serves the reporter snapshot at ``/healthz`` (200 ok, 503 degraded)."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
