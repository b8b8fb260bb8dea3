# Events - Notification names and dispatcher
# Publish/subscribe surface of the feed client

"""
Events Module

Responsibilities:
- Notification name constants
- Ordered, synchronous multi-subscriber dispatch
"""

from collections import defaultdict
from typing import Callable, Dict, List


class Events:
    """Notification names emitted by ThunderClient"""

    # Emitted if an error occurs. Carries the exception.
    ERROR = "ERROR"
    # Emitted when a lightning strike is received. Carries the parsed payload.
    STRIKE = "STRIKE"
    # Emitted when a heartbeat is received. Carries the time of the beat.
    HEARTBEAT = "HEARTBEAT"
    # Emitted when the websocket is opened.
    OPENED = "OPENED"
    # Emitted when the websocket is closed.
    CLOSED = "CLOSED"
    # Emitted when the websocket connection was unauthorized.
    UNAUTHORIZED = "UNAUTHORIZED"
    # Emitted when the client is started.
    STARTED = "STARTED"
    # Emitted when the client is stopped.
    STOPPED = "STOPPED"
    # Emitted when no heartbeat arrived in time. The client reconnects.
    TIMEOUT = "TIMEOUT"

    ALL = (ERROR, STRIKE, HEARTBEAT, OPENED, CLOSED, UNAUTHORIZED, STARTED, STOPPED, TIMEOUT)


class EventEmitter:
    """
    Dispatch table mapping notification name to an ordered list of handlers

    Handlers run synchronously, in subscription order, on the caller's
    stack. Exceptions raised by a handler propagate to whoever emitted.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, name: str, handler: Callable) -> None:
        """Register handler for name (the same handler may be added twice)"""
        self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Callable) -> bool:
        """
        Remove the earliest registration of handler for name

        Returns:
            True if a registration was removed, False otherwise
        """
        handlers = self._handlers.get(name)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def emit(self, name: str, *args) -> bool:
        """
        Invoke every handler registered for name

        Returns:
            True if at least one handler was invoked
        """
        # Snapshot so handlers may (un)subscribe while being dispatched
        handlers = list(self._handlers.get(name, ()))
        for handler in handlers:
            handler(*args)
        return bool(handlers)

    def listener_count(self, name: str) -> int:
        return len(self._handlers.get(name, ()))
