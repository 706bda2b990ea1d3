"""
Live sync client

Keeps a WebSocket open to the update feed and serves the current week /
search results from a local cache that is dropped whenever the server
announces a new dataset.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
import websockets
from websockets.exceptions import WebSocketException

from broadcaster import CONNECTION_ESTABLISHED, DATA_UPDATED

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
CLOSE_RETRY_DELAY = 3  # seconds, after a connection that was open
FAILURE_RETRY_DELAY = 5  # seconds, after a failed connection attempt

CURRENT_WEEK_PATH = "/api/pharmacies/current-week"
SEARCH_PATH = "/api/pharmacies/search"


class SyncClient:
    def __init__(
        self,
        base_url: str,
        ws_url: str,
        session: Optional[requests.Session] = None,
        connect: Callable = websockets.connect,
        close_delay: float = CLOSE_RETRY_DELAY,
        failure_delay: float = FAILURE_RETRY_DELAY,
    ):
        self.base_url = base_url.rstrip("/")
        self.ws_url = ws_url
        self.session = session or requests.Session()
        self._connect = connect
        self.close_delay = close_delay
        self.failure_delay = failure_delay

        self.is_connected = False
        self.last_update: Optional[str] = None
        self._cache: Dict[str, Any] = {}
        self._running = False
        self._wakeup: Optional[asyncio.Event] = None

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        response = self.session.get(
            f"{self.base_url}{path}", params=params, timeout=REQUEST_TIMEOUT
        )
        response.raise_for_status()
        return response.json()

    def current_week(self) -> List[Dict[str, Any]]:
        """Current week's pharmacies, fetched once per dataset version."""
        key = CURRENT_WEEK_PATH
        if key not in self._cache:
            self._cache[key] = self._get(CURRENT_WEEK_PATH)
        return self._cache[key]

    def search(self, query: str) -> List[Dict[str, Any]]:
        key = f"{SEARCH_PATH}?q={query}"
        if key not in self._cache:
            self._cache[key] = self._get(SEARCH_PATH, params={"q": query})
        return self._cache[key]

    def invalidate(self):
        self._cache.clear()

    def handle_message(self, raw: str):
        """React to one message from the update feed."""
        try:
            message = json.loads(raw)
        except ValueError as e:  # JSONDecodeError, or a non UTF-8 binary frame
            logger.error(f"WebSocket: Error parsing message: {e}")
            return

        kind = message.get("type") if isinstance(message, dict) else None
        if kind == CONNECTION_ESTABLISHED:
            logger.info(f"WebSocket: {message.get('message')}")
        elif kind == DATA_UPDATED:
            logger.info("WebSocket: pharmacy data updated")
            self.last_update = message.get("timestamp")
            self.invalidate()
        else:
            logger.info(f"WebSocket: Unknown message type: {kind}")

    def retry_delay(self, was_open: bool) -> float:
        return self.close_delay if was_open else self.failure_delay

    def on_visible(self):
        """The consumer came back to the foreground: reconnect right away."""
        if not self.is_connected and self._wakeup is not None:
            self._wakeup.set()

    def stop(self):
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()

    async def _listen(self) -> bool:
        """One connection lifetime. Returns whether the connection opened."""
        was_open = False
        try:
            async with self._connect(self.ws_url) as ws:
                was_open = True
                self.is_connected = True
                logger.info("WebSocket connected for real-time updates")
                async for raw in ws:
                    self.handle_message(raw)
        except (OSError, WebSocketException) as e:
            if was_open:
                logger.info(f"WebSocket disconnected: {e}")
            else:
                logger.error(f"WebSocket: Failed to connect: {e}")
        except Exception as e:
            # Anything else still ends in a reconnect
            logger.exception(f"WebSocket: Unexpected error: {e}")
        finally:
            self.is_connected = False
        return was_open

    async def run(self):
        """Stay subscribed until stop() is called, reconnecting forever."""
        self._running = True
        self._wakeup = asyncio.Event()
        while self._running:
            was_open = await self._listen()
            if not self._running:
                break

            delay = self.retry_delay(was_open)
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
