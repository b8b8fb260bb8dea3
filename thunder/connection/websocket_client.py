# WebSocket Client - Connection Management
# One feed socket: handshake, receive loop, close

"""
WebSocket Client Module

Responsibilities:
- Open one WebSocket connection to the feed (sub-protocol + auth header)
- Run the receive loop on its own asyncio task
- Report open / message / close / error through callbacks
- Resolve or reject "opened" waiters exactly once

Reconnect policy is not handled here; see thunder.client.ThunderClient.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.typing import Subprotocol

from ..utils.logger import component_logger

SUBPROTOCOL = "echo-protocol"


class ConnectionState(Enum):
    """Feed socket states"""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class FeedConnectionError(ConnectionError):
    """Socket closed before the handshake completed"""


class FeedSocket:
    """
    Single WebSocket connection to the feed

    Callbacks are plain functions invoked on the event loop:
    - on_open()
    - on_message(raw_message)
    - on_close()
    - on_error(exception)

    close() is synchronous: it cancels the connection task, whose cleanup
    closes the socket and fires on_close once.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        subprotocol: str = SUBPROTOCOL,
        close_timeout: float = 10
    ):
        """
        Initialize feed socket

        Args:
            url: WebSocket URL
            headers: Extra handshake headers (Authorization)
            subprotocol: Sub-protocol offered in the handshake
            close_timeout: Seconds to wait for the closing handshake
        """
        self.url = url
        self.headers = dict(headers or {})
        self.subprotocol = subprotocol
        self.close_timeout = close_timeout

        # Connection state
        self.connection: Optional[ClientConnection] = None
        self.state = ConnectionState.IDLE
        self._close_error: Optional[BaseException] = None
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None

        # Event callbacks
        self.on_open_callback: Optional[Callable] = None
        self.on_message_callback: Optional[Callable] = None
        self.on_close_callback: Optional[Callable] = None
        self.on_error_callback: Optional[Callable] = None

        self.logger = component_logger("socket")

    def open(self):
        """
        Start connecting in the background

        Must be called from a running event loop. Calling it again after
        the first time does nothing.
        """
        if self.state != ConnectionState.IDLE:
            return
        self.state = ConnectionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self):
        """Close the connection (pending handshake included)"""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def wait_open(self) -> asyncio.Future:
        """
        Future resolved when the socket opens, rejected with
        FeedConnectionError if it closes first

        Already open sockets give a resolved future; closed ones a
        rejected future.
        """
        future = asyncio.get_running_loop().create_future()
        if self.state == ConnectionState.OPEN:
            future.set_result(None)
        elif self.state == ConnectionState.CLOSED:
            future.set_exception(self._connection_error())
        else:
            self._waiters.append(future)
        return future

    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def get_state(self) -> ConnectionState:
        return self.state

    async def _run(self):
        try:
            self.logger.info(f"Connecting to {self.url}...")
            try:
                self.connection = await connect(
                    self.url,
                    subprotocols=[Subprotocol(self.subprotocol)],
                    additional_headers=self.headers,
                    open_timeout=None,  # no client-side handshake deadline
                    ping_interval=None,  # liveness comes from feed heartbeats
                    close_timeout=self.close_timeout
                )
            except asyncio.CancelledError:
                self.logger.debug("Handshake cancelled")
                raise
            except Exception as e:
                self.logger.error(f"Connection failed: {e}")
                self._close_error = e
                self._dispatch(self.on_error_callback, e)
                return

            self.state = ConnectionState.OPEN
            self.logger.info("Connected")
            self._resolve_waiters()
            self._dispatch(self.on_open_callback)

            await self._receive_loop()

        finally:
            await self._shutdown()

    async def _receive_loop(self):
        try:
            async for message in self.connection:
                callback = self.on_message_callback
                if callback is None:
                    continue
                try:
                    callback(message)
                except Exception as e:
                    self.logger.error(f"Error handling message: {e}")

        except ConnectionClosed as e:
            self.logger.warning(f"Connection closed by server: {e}")

        except asyncio.CancelledError:
            self.logger.debug("Receive loop cancelled")
            raise

        except Exception as e:
            self.logger.error(f"Receive loop error: {e}")
            self._dispatch(self.on_error_callback, e)

    async def _shutdown(self):
        if self.connection is not None:
            try:
                await asyncio.wait_for(self.connection.close(), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Connection close timeout - forcing")
            except Exception as e:
                self.logger.warning(f"Error closing connection: {e}")
        self._finish()

    def _finish(self):
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self.logger.info("Disconnected")
        self._reject_waiters()
        self._dispatch(self.on_close_callback)

    def _connection_error(self) -> FeedConnectionError:
        error = FeedConnectionError(f"Connection to {self.url} closed before opening")
        error.__cause__ = self._close_error
        return error

    def _resolve_waiters(self):
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(None)

    def _reject_waiters(self):
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_exception(self._connection_error())

    def _dispatch(self, callback: Optional[Callable], *args: Any):
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error(f"Callback error: {e}")
