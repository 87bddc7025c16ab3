"""
Open client connections.

A Connection wraps one accepted WebSocket. Players hold a reference to the
Connection they joined from, but only compare it by identity; the socket's
lifetime is owned by the endpoint in main.py.
"""

import logging
import uuid
from typing import Iterator, Optional

from fastapi import WebSocket

from messages import OutboundMessage, to_wire

logger = logging.getLogger(__name__)


class Connection:
    """One open client WebSocket."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or str(uuid.uuid4())

    async def send(self, message: OutboundMessage) -> None:
        """Send a message, logging (not raising) on a broken socket."""
        try:
            await self.websocket.send_json(to_wire(message))
        except Exception as e:
            logger.warning(f"Send of {message.type} to connection {self.id[:8]} failed: {e}")

    def __repr__(self) -> str:
        return f"Connection({self.id[:8]})"


class ConnectionRegistry:
    """All currently open connections, used for game list fan-out."""

    def __init__(self) -> None:
        self._connections: list[Connection] = []

    def add(self, connection: Connection) -> None:
        self._connections.append(connection)

    def remove(self, connection: Connection) -> None:
        if connection in self._connections:
            self._connections.remove(connection)

    async def broadcast(self, message: OutboundMessage) -> None:
        for connection in list(self._connections):
            await connection.send(message)

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections))

    def __contains__(self, connection: Connection) -> bool:
        return connection in self._connections
