# Thunder Client - Connection Supervisor
# Owns the feed socket, classifies frames, reconnects on heartbeat timeout

"""
Thunder Client Module

Responsibilities:
- Own at most one feed socket per client
- Translate frames into STRIKE / HEARTBEAT notifications
- Supervise liveness with HeartbeatMonitor
- Silent stop/start cycle when heartbeats stop arriving
- Surface 401 rejections and transport errors as notifications

All state is touched from the event loop only (public calls, the socket
task and the heartbeat task), so no locking is needed.
"""

import asyncio
import base64
from typing import Optional

from websockets.exceptions import InvalidStatus

from .config import ClientConfig
from .connection.heartbeat_manager import HeartbeatMonitor
from .connection.websocket_client import FeedSocket
from .events import EventEmitter, Events
from .processors.message_parser import MalformedMessageError, MessageType, classify, parse_message
from .utils.logger import component_logger

UNAUTHORIZED_MARKER = "HTTP 401"


class ThunderClient(EventEmitter):
    """
    Lightning strike feed client

    Subscribe to the names in Events, then await start(). The client
    keeps one connection open and replaces it whenever the feed stops
    sending heartbeats for longer than the configured timeout.
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        url: Optional[str] = None,
        heartbeat_timeout: Optional[int] = None,
        heartbeat_interval: Optional[int] = None,
        config: Optional[ClientConfig] = None
    ):
        """
        Create a new client

        Args:
            username: Feed username, SMHI_USERNAME if not given
            password: Feed password, SMHI_PASSWORD if not given
            url: Feed URL, SMHI_URL if not given
            heartbeat_timeout: Max silence in ms, SMHI_HEARTBEAT_TIMEOUT or 35000
            heartbeat_interval: Poll interval in ms, SMHI_HEARTBEAT_INTERVAL or 1000
            config: Prebuilt configuration; other arguments are ignored
        """
        super().__init__()
        self.config = config or ClientConfig.from_env(
            url=url,
            username=username,
            password=password,
            heartbeat_timeout=heartbeat_timeout,
            heartbeat_interval=heartbeat_interval
        )

        self._connection: Optional[FeedSocket] = None
        self.heartbeat = HeartbeatMonitor(
            self.config.heartbeat_timeout,
            self.config.heartbeat_interval,
            self._on_heartbeat_missed
        )

        self.logger = component_logger("client")

    def start(self, suppress_notification: bool = False) -> asyncio.Future:
        """
        Start the client

        Args:
            suppress_notification: If True, STARTED is not emitted

        Returns:
            Future resolved when the socket opens, rejected with
            FeedConnectionError if it closes before opening
        """
        connection = self._connection
        if connection is None:
            connection = self._create_connection()
            self._connection = connection

        connection.on_message_callback = self._on_message
        future = connection.wait_open()

        if not suppress_notification:
            self.emit(Events.STARTED)

        return future

    def stop(self, suppress_notification: bool = False):
        """
        Stop the client

        Args:
            suppress_notification: If True, STOPPED is not emitted
        """
        connection = self._connection
        if connection is not None:
            self.logger.info("Stopping connection")
            self.heartbeat.stop()
            connection.on_message_callback = None
            self._connection = None
            connection.close()

        if not suppress_notification:
            self.emit(Events.STOPPED)

    def get_connection(self) -> Optional[FeedSocket]:
        """Current feed socket, or None when idle"""
        return self._connection

    def get_authorization(self) -> str:
        """
        Authorization header value

        The upstream feed expects a Basic credential wrapped in a Bearer
        scheme: "Bearer Basic <base64(username:password)>".
        """
        credentials = f"{self.config.username or ''}:{self.config.password or ''}"
        auth = "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return f"Bearer {auth}"

    def _create_connection(self) -> FeedSocket:
        connection = FeedSocket(
            self.config.url,
            headers={"Authorization": self.get_authorization()}
        )
        connection.on_open_callback = lambda: self._on_open(connection)
        connection.on_close_callback = lambda: self._on_close(connection)
        connection.on_error_callback = lambda e: self._on_error(connection, e)
        connection.open()
        return connection

    def _on_message(self, raw_message):
        try:
            data = parse_message(raw_message)
        except MalformedMessageError as e:
            self.logger.error(f"Dropping malformed frame: {e}")
            self.emit(Events.ERROR, e)
            return

        if classify(data) is MessageType.HEARTBEAT:
            self.heartbeat.beat()
            self.logger.debug("Heartbeat received")
            self.emit(Events.HEARTBEAT, self.heartbeat.last_beat)
            return

        self.emit(Events.STRIKE, data)

    def _on_open(self, connection: FeedSocket):
        if connection is self._connection:
            self.heartbeat.start()
        self.emit(Events.OPENED)

    def _on_close(self, connection: FeedSocket):
        # A socket replaced by a reconnect must not stop the new one's monitor
        if connection is self._connection:
            self.heartbeat.stop()
            self._connection = None
        self.emit(Events.CLOSED)

    def _on_error(self, connection: FeedSocket, error: Exception):
        if is_unauthorized(error):
            self.logger.error("Feed rejected credentials (401)")
            self.emit(Events.UNAUTHORIZED)
            return

        self.logger.error(f"Transport error: {error}")
        self.emit(Events.ERROR, error)

    def _on_heartbeat_missed(self):
        self.logger.warning(
            f"No heartbeat for {self.heartbeat.elapsed():.0f}ms "
            f"(timeout {self.config.heartbeat_timeout}ms) - reconnecting"
        )
        try:
            self.emit(Events.TIMEOUT)
        finally:
            # Reconnect even if a TIMEOUT observer raised
            self.stop(True)
            future = self.start(True)
            future.add_done_callback(self._on_reconnect_done)
            # Re-arm so a new connection gets one full timeout window
            self.heartbeat.start()

    def _on_reconnect_done(self, future: asyncio.Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.logger.warning(f"Reconnect failed: {error}")
        else:
            self.logger.info("Reconnected after heartbeat timeout")


def is_unauthorized(error: BaseException) -> bool:
    """True if error is a 401 handshake rejection"""
    if isinstance(error, InvalidStatus):
        return error.response.status_code == 401
    return UNAUTHORIZED_MARKER in str(error)
