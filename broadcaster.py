import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)

DATA_UPDATED = "PHARMACY_DATA_UPDATED"
CONNECTION_ESTABLISHED = "CONNECTION_ESTABLISHED"
WELCOME_MESSAGE = "Connexion établie pour les mises à jour en temps réel"


class UpdateBroadcaster:
    """Live WebSocket subscribers waiting for dataset updates.

    One instance per running app, created at startup and cleared at
    shutdown. Delivery is at most once per subscriber, without retries.
    """

    def __init__(self):
        self.connections: Set[WebSocket] = set()

    def __len__(self) -> int:
        return len(self.connections)

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.connections.add(ws)
        logger.info(f"New WebSocket connection. Total clients: {len(self.connections)}")
        try:
            await ws.send_json({"type": CONNECTION_ESTABLISHED, "message": WELCOME_MESSAGE})
        except Exception:
            self.disconnect(ws)
            raise

    def disconnect(self, ws: WebSocket):
        if ws in self.connections:
            self.connections.discard(ws)
            logger.info(f"WebSocket connection closed. Total clients: {len(self.connections)}")

    async def broadcast(self, dataset: List[Dict[str, Any]]) -> int:
        """Send the refreshed dataset to every open subscriber.

        Returns how many subscribers the message was handed to.
        """
        payload = {
            "type": DATA_UPDATED,
            "data": dataset,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        delivered = 0
        dead = []
        for ws in list(self.connections):
            if ws.client_state != WebSocketState.CONNECTED:
                continue
            try:
                await ws.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping WebSocket subscriber after send failure: {e}")
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

        logger.info(f"Broadcast {len(dataset)} pharmacies to {delivered} client(s)")
        return delivered

    def clear(self):
        self.connections.clear()
