"""Websocket transport to the Vallox controller."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from typing import Awaitable, Callable, Optional, Union

import aiohttp

from ..config import DeviceConfig
from ..errors import DeviceNotConnected
from ..protocol.frames import PAGE_SIZE

LOGGER = logging.getLogger(__name__)

FrameCallback = Callable[[bytes], Union[Awaitable[None], None]]
ConnectedCallback = Callable[[], Union[Awaitable[None], None]]
DisconnectedCallback = Callable[[Optional[BaseException]], Union[Awaitable[None], None]]


class ValloxClient:
    """Keeps one binary websocket open to the device and reconnects on loss.

    Inbound binary messages are handed to ``on_frame`` one at a time and in
    order. The next message is not read until the callback returns, so a
    callback that waits applies backpressure to the socket.
    """

    def __init__(
        self,
        config: DeviceConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.reconnect_initial = config.reconnect_initial_seconds
        self.reconnect_max = config.reconnect_max_seconds

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._on_frame: Optional[FrameCallback] = None
        self._on_connected: Optional[ConnectedCallback] = None
        self._on_disconnected: Optional[DisconnectedCallback] = None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._active_ws: Optional[aiohttp.ClientWebSocketResponse] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        ws = self._active_ws
        return ws is not None and not ws.closed

    async def start(
        self,
        on_frame: FrameCallback,
        *,
        on_connected: Optional[ConnectedCallback] = None,
        on_disconnected: Optional[DisconnectedCallback] = None,
    ) -> None:
        """Start the connect/listen loop."""

        if self._listener_task is not None:
            raise RuntimeError("Vallox client already started")

        self._on_frame = on_frame
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected

        self._stop_event.clear()
        self._listener_task = asyncio.create_task(self._listen_loop())
        await asyncio.sleep(0)

    async def stop(self) -> None:
        """Stop listening and close the underlying resources."""

        self._stop_event.set()

        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def aclose(self) -> None:  # alias for explicit closing
        await self.stop()

    async def send(self, payload: bytes) -> None:
        """Send one binary message to the device."""

        ws = self._active_ws
        if ws is None or ws.closed:
            raise DeviceNotConnected(f"No open websocket to {self.config.uri}")
        await ws.send_bytes(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=None, sock_connect=self.config.connect_timeout_seconds
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def _max_message_size(self) -> int:
        return self.config.max_pages * PAGE_SIZE + PAGE_SIZE

    async def _listen_loop(self) -> None:
        backoff = self.reconnect_initial

        while not self._stop_event.is_set():
            error: Optional[BaseException] = None
            connected = False
            try:
                async with self._ensure_session().ws_connect(
                    self.config.uri,
                    max_msg_size=self._max_message_size(),
                    autoping=True,
                ) as ws:
                    LOGGER.info("Connected to Vallox websocket at %s", self.config.uri)
                    backoff = self.reconnect_initial
                    self._active_ws = ws
                    connected = True
                    try:
                        await _invoke(self._on_connected)
                        async for message in ws:
                            if self._stop_event.is_set():
                                break
                            if message.type == aiohttp.WSMsgType.BINARY:
                                await self._dispatch(message.data)
                            elif message.type == aiohttp.WSMsgType.TEXT:
                                LOGGER.debug("Ignoring text message from device: %r", message.data[:80])
                            elif message.type == aiohttp.WSMsgType.ERROR:
                                raise ws.exception() or RuntimeError("Websocket error")
                    finally:
                        self._active_ws = None
                if not self._stop_event.is_set():
                    LOGGER.warning("Vallox websocket closed by device")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc
                if self._stop_event.is_set():
                    break
                LOGGER.warning("Vallox websocket error: %s", exc)

            if connected:
                await _invoke(self._on_disconnected, error)

            if self._stop_event.is_set():
                break

            # Full jitter: sleep uniformly between 0 and the current backoff.
            jittered = random.uniform(0, backoff)
            LOGGER.debug("Reconnecting to %s in %.1fs", self.config.uri, jittered)
            await asyncio.sleep(jittered)
            backoff = min(backoff * 2, self.reconnect_max)

    async def _dispatch(self, data: bytes) -> None:
        callback = self._on_frame
        if callback is None:
            return
        LOGGER.debug("Received %d byte frame", len(data))
        await _invoke(callback, data)


async def _invoke(callback, *args) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if asyncio.iscoroutine(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        LOGGER.exception("Vallox client callback failed")
