"""Shop-scoped WebSocket fan-out for paid events"""

import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ShopConnectionManager:
    """Tracks open sockets per shop and broadcasts JSON messages to them"""

    def __init__(self):
        self._sockets: Dict[int, Set[WebSocket]] = {}

    def register(self, shop_id: int, ws: WebSocket) -> None:
        self._sockets.setdefault(shop_id, set()).add(ws)
        logger.info(f"WebSocket connected for shop {shop_id} ({len(self._sockets[shop_id])} open)")

    def unregister(self, shop_id: int, ws: WebSocket) -> None:
        sockets = self._sockets.get(shop_id)
        if not sockets:
            return
        sockets.discard(ws)
        if not sockets:
            del self._sockets[shop_id]
        logger.info(f"WebSocket disconnected for shop {shop_id}")

    def connection_count(self, shop_id: int) -> int:
        return len(self._sockets.get(shop_id, ()))

    def total_connections(self) -> int:
        return sum(len(sockets) for sockets in self._sockets.values())

    def shop_count(self) -> int:
        return len(self._sockets)

    async def broadcast(self, shop_id: int, message: Dict[str, Any]) -> int:
        """
        Send a message to every socket of one shop.

        Sockets that fail to receive are dropped. Returns the number of
        clients the message reached.
        """
        delivered = 0
        for ws in list(self._sockets.get(shop_id, ())):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping WebSocket for shop {shop_id} after send failure: {e}")
                self.unregister(shop_id, ws)
        return delivered


hub = ShopConnectionManager()
