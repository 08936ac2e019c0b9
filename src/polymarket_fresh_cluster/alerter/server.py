"""WebSocket server exposing a BroadcastAlertSink to dashboards.

On connect a client receives the latest `stats` snapshot and the
`existingAlerts` list, then every `newAlert`, `alertUpdate` and `stats`
event as a JSON `{"event": ..., "data": ...}` message.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from polymarket_fresh_cluster.alerter.sink import BroadcastAlertSink

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_PING_INTERVAL = 30  # seconds


class AlertServer:
    """Serves broadcast alert events over WebSocket."""

    def __init__(
        self,
        sink: BroadcastAlertSink,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        ping_interval: int = DEFAULT_PING_INTERVAL,
    ) -> None:
        self._sink = sink
        self._host = host
        self._port = port
        self._ping_interval = ping_interval
        self._server: Server | None = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(
            self._handle,
            self._host,
            self._port,
            ping_interval=self._ping_interval,
        )
        logger.info("Alert server listening on ws://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Alert server stopped")

    async def _handle(self, ws: ServerConnection) -> None:
        subscription = self._sink.subscribe()
        try:
            await ws.send(_encode({"event": "stats", "data": subscription.stats or {}}))
            await ws.send(_encode({"event": "existingAlerts", "data": subscription.existing_alerts}))
            while not subscription.dropped:
                try:
                    message = await asyncio.wait_for(
                        subscription.queue.get(), timeout=self._ping_interval
                    )
                except TimeoutError:
                    continue
                await ws.send(_encode(message))
            await ws.close(code=1008, reason="subscriber too slow")
        except websockets.ConnectionClosed:
            logger.debug("Client %s closed the connection", ws.remote_address)
        finally:
            self._sink.unsubscribe(subscription)


def _encode(message: dict[str, Any]) -> str:
    return json.dumps(message, default=str)
