# Heartbeat Monitor - Detect silent connection death
# Polls time since last beat and reports misses

"""
Heartbeat Monitor Module

Responsibilities:
- Track time of the last liveness signal
- Poll it on a fixed interval (asyncio task)
- Call the miss callback on every tick past the timeout
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ..utils.logger import component_logger


class HeartbeatMonitor:
    """
    Heartbeat monitor

    The miss callback fires on every poll tick while the timeout is
    exceeded, not once per episode. Callers either make it idempotent or
    call stop()/start() from inside it.
    """

    def __init__(self, timeout: int, interval: int, on_missed: Callable[[], None]):
        """
        Create a new heartbeat monitor

        Args:
            timeout: Max time between beats in milliseconds
            interval: Poll interval in milliseconds
            on_missed: Called (on the poll task) when a beat is overdue
        """
        self.timeout = timeout
        self.interval = interval
        self.on_missed = on_missed
        self.last_beat = datetime.now(timezone.utc)
        # Deadline runs on the monotonic clock; last_beat is for observers
        self._last_beat_monotonic = time.monotonic()

        self._task: Optional[asyncio.Task] = None
        self.logger = component_logger("heartbeat")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start heartbeat monitor (restarts the timer if already running)"""
        self.beat()
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._poll_loop())

    def stop(self):
        """Stop heartbeat monitor"""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None

    def beat(self):
        """Update timestamp when a heartbeat occurs"""
        self.last_beat = datetime.now(timezone.utc)
        self._last_beat_monotonic = time.monotonic()

    def elapsed(self) -> float:
        """Milliseconds since the last beat"""
        return (time.monotonic() - self._last_beat_monotonic) * 1000

    async def _poll_loop(self):
        try:
            while True:
                await asyncio.sleep(self.interval / 1000)
                try:
                    self._check()
                except Exception as e:
                    self.logger.error(f"Heartbeat miss handler error: {e}")
        except asyncio.CancelledError:
            self.logger.debug("Heartbeat loop cancelled")
            raise

    def _check(self):
        """Check when last heartbeat was seen, call on_missed if too long ago"""
        elapsed = self.elapsed()
        if elapsed > self.timeout:
            self.logger.debug(f"Heartbeat overdue: {elapsed:.0f}ms > {self.timeout}ms")
            self.on_missed()
