"""WebSocket bridge between UI clients and the orchestrator.

Each client receives the current status on connect and every outbound
message afterwards. JSON messages from clients are handed to
Orchestrator.handle_client_message().
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import TYPE_CHECKING, Any, Callable

import websockets

from bobi.core.events import OUTBOUND, OutboundMessage

if TYPE_CHECKING:
    from bobi.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class BridgeServer:
    """Serves the orchestrator to UI clients over WebSocket.

    Args:
        orchestrator: Orchestrator to relay messages to and from.
        host: Interface to bind.
        port: TCP port to bind. 0 picks a free port.
    """

    def __init__(self, orchestrator: Orchestrator, host: str = "127.0.0.1", port: int = 3001) -> None:
        self._orchestrator = orchestrator
        self._host = host
        self._port = port
        self._server: Any = None
        self._clients: set[Any] = set()
        self._client_ids = itertools.count(1)
        self._unsubscribe: Callable[[], None] | None = None

    async def start(self) -> None:
        self._server = await websockets.serve(self._handle_client, self._host, self._port)
        self._unsubscribe = self._orchestrator.bus.subscribe(OUTBOUND, self._on_outbound)
        logger.info("Bridge listening on ws://%s:%d", self._host, self.port)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._clients.clear()
        logger.info("Bridge stopped.")

    @property
    def port(self) -> int:
        """Bound port (useful when started with port 0)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self._port

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def _handle_client(self, websocket: Any) -> None:
        client_id = f"client_{next(self._client_ids)}"
        self._clients.add(websocket)
        logger.info("Client connected: %s", client_id)

        try:
            status = OutboundMessage("status", self._orchestrator.status())
            await websocket.send(json.dumps(status.to_dict()))
            async for raw in websocket:
                await self._handle_raw(client_id, raw)
        except websockets.ConnectionClosed as e:
            logger.info("Client %s closed: %s", client_id, e)
        finally:
            self._clients.discard(websocket)
            logger.info("Client disconnected: %s", client_id)

    async def _handle_raw(self, client_id: str, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON from %s: %s", client_id, e)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object message from %s", client_id)
            return

        try:
            await self._orchestrator.handle_client_message(message)
        except Exception:
            logger.exception("Failed to handle %s message from %s", message.get("type"), client_id)

    def _on_outbound(self, message: OutboundMessage) -> None:
        if not self._clients:
            return
        websockets.broadcast(self._clients, json.dumps(message.to_dict()))
