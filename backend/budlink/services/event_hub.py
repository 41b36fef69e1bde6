from typing import Set

from fastapi import WebSocket

from budlink.utils.logging import api_logger as logger


class EventHub:
    """Connected WebSocket clients and fan-out of JSON events to them."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    def register(self, websocket: WebSocket) -> None:
        self.clients.add(websocket)
        logger.debug("WebSocket client registered (%d connected)", len(self.clients))

    def unregister(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)

    async def broadcast(self, event: dict) -> None:
        """Send an event to every client. A client whose send fails is dropped."""
        failed = []
        for client in list(self.clients):
            try:
                await client.send_json(event)
            except Exception as e:
                logger.warning("Dropping WebSocket client, sending %s failed: %s", event.get("type"), e)
                failed.append(client)
        for client in failed:
            self.clients.discard(client)


event_hub = EventHub()
