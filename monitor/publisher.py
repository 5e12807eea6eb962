"""
Push of check lifecycle events to connected dashboard clients.
"""
import asyncio
import logging
from typing import Any, List, Optional, Set

logger = logging.getLogger(__name__)


class RealtimePublisher:
    """
    Broadcasts ``{"event": name, "data": payload}`` messages.

    A connection is anything with an async ``send_json(dict)`` method, in
    practice a FastAPI WebSocket. Connections that fail to receive are
    dropped.
    """

    def __init__(self):
        self.connections: Set[Any] = set()

    def register(self, connection):
        self.connections.add(connection)
        logger.info(f"Client connected ({len(self.connections)} total)")

    def unregister(self, connection):
        self.connections.discard(connection)
        logger.info(f"Client disconnected ({len(self.connections)} total)")

    @staticmethod
    def message(event: str, data: Optional[dict] = None) -> dict:
        return {"event": event, "data": data}

    async def send(self, connection, event: str, data: Optional[dict] = None) -> bool:
        try:
            await connection.send_json(self.message(event, data))
            return True
        except Exception as e:
            logger.debug(f"Dropping client after failed send: {e}")
            self.connections.discard(connection)
            return False

    async def broadcast(self, event: str, data: Optional[dict] = None):
        targets = list(self.connections)
        if not targets:
            return
        await asyncio.gather(*(self.send(c, event, data) for c in targets))

    async def checking(self):
        logger.debug("Emitting checking event")
        await self.broadcast("checking")

    async def listings_update(self, listings: List[dict], next_check: int):
        logger.debug(f"Emitting listingsUpdate with {len(listings)} items, nextCheck={next_check}")
        await self.broadcast("listingsUpdate", {"listings": listings, "nextCheck": next_check})

    async def next_check(self, next_check: int, connection=None):
        """Deadline-only event, to one client when ``connection`` is given."""
        data = {"nextCheck": next_check}
        if connection is not None:
            await self.send(connection, "nextCheck", data)
        else:
            await self.broadcast("nextCheck", data)

    async def error(self, message: str, code: str):
        await self.broadcast("error", {"message": message, "code": code})
