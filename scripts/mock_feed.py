# Mock Feed - In-process WebSocket server for tests
# Usage: async with MockFeedServer() as feed: ThunderClient(url=feed.url)

"""
Mock Feed Module

Serves the feed's sub-protocol on an ephemeral localhost port, records
handshake headers, and lets tests push heartbeat / strike frames.
"""

import asyncio
import json
from datetime import datetime, timezone
from http import HTTPStatus
from typing import List, Optional

from websockets.asyncio.server import ServerConnection, serve
from websockets.typing import Subprotocol

SUBPROTOCOL = "echo-protocol"

STRIKE_MESSAGE = {
    "time": "2024-06-01T12:00:00.000Z",
    "countryCode": "SE",
    "pos": {
        "lat": 61.8996,
        "lon": 14.7107,
        "proj": "EPSG:4326"
    },
    "meta": {
        "peakCurrent": 123,
        "cloudIndicator": 0
    }
}


def heartbeat_message() -> dict:
    return {
        "time": datetime.now(timezone.utc).isoformat(),
        "countryCode": "ZZ"
    }


class MockFeedServer:
    """Feed server for tests"""

    def __init__(self, reject_status: Optional[HTTPStatus] = None, handshake_delay: float = 0):
        """
        Args:
            reject_status: Refuse every handshake with this HTTP status
            handshake_delay: Seconds to stall before answering a handshake
        """
        self.reject_status = reject_status
        self.handshake_delay = handshake_delay
        self.clients = set()
        self.authorization_headers: List[Optional[str]] = []
        self.connection_count = 0
        self._server = None

    @property
    def url(self) -> str:
        port = self._server.sockets[0].getsockname()[1]
        return f"ws://127.0.0.1:{port}"

    async def __aenter__(self) -> "MockFeedServer":
        self._server = await serve(
            self._handler,
            "127.0.0.1",
            0,
            subprotocols=[Subprotocol(SUBPROTOCOL)],
            process_request=self._process_request
        )
        return self

    async def __aexit__(self, *exc_info):
        self._server.close()
        await self._server.wait_closed()

    async def _process_request(self, connection: ServerConnection, request):
        self.authorization_headers.append(request.headers.get("Authorization"))
        if self.handshake_delay:
            await asyncio.sleep(self.handshake_delay)
        if self.reject_status is not None:
            return connection.respond(self.reject_status, f"{self.reject_status.phrase}\n")
        return None

    async def _handler(self, websocket: ServerConnection):
        self.connection_count += 1
        self.clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self.clients.discard(websocket)

    async def send(self, message, settle: float = 0.02):
        """Send message (dict as JSON, str as-is) to every client"""
        payload = message if isinstance(message, str) else json.dumps(message)
        for websocket in list(self.clients):
            await websocket.send(payload)
        await asyncio.sleep(settle)

    async def send_heartbeat(self):
        await self.send(heartbeat_message())

    async def send_strike(self, strike: dict = None):
        await self.send(strike or STRIKE_MESSAGE)

    async def drop_clients(self, settle: float = 0.05):
        """Close every client connection from the server side"""
        for websocket in list(self.clients):
            await websocket.close()
        await asyncio.sleep(settle)
