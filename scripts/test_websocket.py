#!/usr/bin/env python3
# Test Feed Client Connection
# Usage: pytest scripts/test_websocket.py  (or python scripts/test_websocket.py)

"""
Feed Client Connection Test Script

Tests:
1. Connection lifecycle (start / stop / get_connection)
2. Authorization header and sub-protocol
3. Heartbeat and strike notifications
4. Silent reconnect on heartbeat timeout
5. Unauthorized, transport and malformed-frame errors
6. Configured log level and file reach component loggers

Runs against an in-process mock feed (no credentials required)
"""

import asyncio
import base64
import logging
import socket
import sys
from collections import defaultdict
from datetime import datetime
from http import HTTPStatus
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from mock_feed import MockFeedServer, STRIKE_MESSAGE
from thunder.client import ThunderClient, is_unauthorized
from thunder.connection.websocket_client import ConnectionState, FeedConnectionError, FeedSocket
from thunder.events import Events
from thunder.processors.message_parser import MalformedMessageError
from thunder.utils.logger import ROOT_LOGGER, component_logger, setup_logger

logger = setup_logger("TestWebSocket", "INFO")


def record(client: ThunderClient) -> dict:
    """Subscribe to every notification, collecting payloads by name"""
    seen = defaultdict(list)
    for name in Events.ALL:
        client.subscribe(name, lambda *args, _name=name: seen[_name].append(args))
    return seen


def make_client(url: str, **kwargs) -> ThunderClient:
    kwargs.setdefault("username", "user")
    kwargs.setdefault("password", "secret")
    return ThunderClient(url=url, **kwargs)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_connection_is_none_before_start_and_after_stop():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            before = client.get_connection()
            assert await client.start() is None
            during = client.get_connection()
            during_state = during.get_state()
            client.stop()
            return before, during, during_state, client.get_connection()

    before, during, during_state, after = asyncio.run(scenario())
    assert before is None
    assert during is not None
    assert during_state is ConnectionState.OPEN
    assert after is None
    logger.info("✅ Connection handle follows start/stop")


def test_restart_creates_new_connection():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            await client.start()
            first = client.get_connection()
            client.stop()
            await client.start()
            second = client.get_connection()
            is_open = second.is_open()
            client.stop()
            await asyncio.sleep(0.05)
            return first, second, is_open, feed.connection_count

    first, second, is_open, connections = asyncio.run(scenario())
    assert first is not second
    assert is_open
    assert connections == 2
    logger.info("✅ start/stop/start opens a fresh connection")


def test_lifecycle_notifications():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            future = client.start()
            started_before_open = len(seen[Events.STARTED]) == 1 and not seen[Events.OPENED]
            await future
            client.stop()
            await asyncio.sleep(0.05)
            return seen, started_before_open

    seen, started_before_open = asyncio.run(scenario())
    assert started_before_open
    assert len(seen[Events.STARTED]) == 1
    assert len(seen[Events.OPENED]) == 1
    assert len(seen[Events.STOPPED]) == 1
    assert len(seen[Events.CLOSED]) == 1
    logger.info("✅ STARTED, OPENED, STOPPED, CLOSED emitted once each")


def test_authorization_header_is_bearer_wrapped_basic():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, username="alice", password="s3cret")
            await client.start()
            client.stop()
            return client.get_authorization(), feed.authorization_headers

    authorization, received = asyncio.run(scenario())
    expected = "Bearer Basic " + base64.b64encode(b"alice:s3cret").decode("ascii")
    assert authorization == expected
    assert received == [expected]
    logger.info(f"✅ Authorization header: {expected}")


def test_heartbeat_notification():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            await client.start()
            await feed.send_heartbeat()
            client.stop()
            return seen, client.heartbeat.last_beat

    seen, last_beat = asyncio.run(scenario())
    assert len(seen[Events.HEARTBEAT]) == 1
    assert seen[Events.STRIKE] == []
    (beat_time,) = seen[Events.HEARTBEAT][0]
    assert isinstance(beat_time, datetime)
    assert beat_time == last_beat
    logger.info("✅ Heartbeat emitted once, no strike")


def test_strike_notification_carries_payload():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            await client.start()
            await feed.send_strike()
            client.stop()
            return seen

    seen = asyncio.run(scenario())
    assert seen[Events.HEARTBEAT] == []
    assert len(seen[Events.STRIKE]) == 1
    (strike,) = seen[Events.STRIKE][0]
    assert strike == STRIKE_MESSAGE
    assert strike["countryCode"] == "SE"
    assert strike["pos"] == {"lat": 61.8996, "lon": 14.7107, "proj": "EPSG:4326"}
    assert strike["meta"] == {"peakCurrent": 123, "cloudIndicator": 0}
    logger.info("✅ Strike forwarded verbatim")


def test_strike_without_position_is_still_a_strike():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            await client.start()
            await feed.send({"time": "2024-06-01T12:00:00Z", "countryCode": "FI"})
            client.stop()
            return seen

    seen = asyncio.run(scenario())
    assert seen[Events.STRIKE] == [({"time": "2024-06-01T12:00:00Z", "countryCode": "FI"},)]
    logger.info("✅ Any non-ZZ frame is a strike")


def test_timeout_reconnects_silently():
    """
    timeout=100ms, interval=10ms, no heartbeats: exactly one TIMEOUT,
    a new connection handle, and no STOPPED/extra STARTED
    """
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, heartbeat_timeout=100, heartbeat_interval=10)
            seen = record(client)
            await client.start()
            before = client.get_connection()
            await asyncio.sleep(0.15)
            after = client.get_connection()
            client.stop()
            await asyncio.sleep(0.05)
            return seen, before, after, feed.connection_count

    seen, before, after, connections = asyncio.run(scenario())
    assert len(seen[Events.TIMEOUT]) == 1
    assert after is not None
    assert after is not before
    assert connections == 2
    assert len(seen[Events.STARTED]) == 1
    assert len(seen[Events.STOPPED]) == 1  # the explicit stop at the end
    assert len(seen[Events.OPENED]) == 2
    logger.info("✅ Timeout replaced the connection without STOPPED/STARTED")


def test_timeout_rearms_for_a_full_window():
    """
    After a reconnect the next TIMEOUT needs another full timeout of
    silence, instead of firing on every poll tick
    """
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, heartbeat_timeout=100, heartbeat_interval=10)
            seen = record(client)
            await client.start()
            await asyncio.sleep(0.27)
            client.stop()
            await asyncio.sleep(0.05)
            return seen

    seen = asyncio.run(scenario())
    assert len(seen[Events.TIMEOUT]) == 2
    logger.info("✅ One TIMEOUT per silent window")


def test_timeout_reconnects_even_if_subscriber_raises():
    """A failing TIMEOUT observer must not leave the dead connection in place"""
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, heartbeat_timeout=100, heartbeat_interval=10)
            seen = record(client)

            def broken():
                raise RuntimeError("observer failed")

            client.subscribe(Events.TIMEOUT, broken)
            await client.start()
            before = client.get_connection()
            await asyncio.sleep(0.15)
            after = client.get_connection()
            client.stop()
            await asyncio.sleep(0.05)
            return seen, before, after, feed.connection_count

    seen, before, after, connections = asyncio.run(scenario())
    assert len(seen[Events.TIMEOUT]) == 1
    assert after is not None
    assert after is not before
    assert connections == 2
    logger.info("✅ Reconnect survives a raising TIMEOUT observer")


def test_heartbeats_prevent_timeout():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, heartbeat_timeout=100, heartbeat_interval=10)
            seen = record(client)
            await client.start()
            connection = client.get_connection()
            for _ in range(6):
                await feed.send_heartbeat()
                await asyncio.sleep(0.03)
            still_same = client.get_connection() is connection
            client.stop()
            return seen, still_same

    seen, still_same = asyncio.run(scenario())
    assert seen[Events.TIMEOUT] == []
    assert len(seen[Events.HEARTBEAT]) == 6
    assert still_same
    logger.info("✅ Heartbeats keep the connection")


def test_unauthorized():
    async def scenario():
        async with MockFeedServer(reject_status=HTTPStatus.UNAUTHORIZED) as feed:
            client = make_client(feed.url)
            seen = record(client)
            with pytest.raises(FeedConnectionError) as excinfo:
                await client.start()
            await asyncio.sleep(0.02)
            return seen, client.get_connection(), excinfo.value

    seen, connection, error = asyncio.run(scenario())
    assert len(seen[Events.UNAUTHORIZED]) == 1
    assert seen[Events.ERROR] == []
    assert len(seen[Events.CLOSED]) == 1
    assert seen[Events.OPENED] == []
    assert connection is None
    assert is_unauthorized(error.__cause__)
    logger.info("✅ 401 surfaced as UNAUTHORIZED")


def test_other_http_rejection_is_an_error():
    async def scenario():
        async with MockFeedServer(reject_status=HTTPStatus.FORBIDDEN) as feed:
            client = make_client(feed.url)
            seen = record(client)
            with pytest.raises(FeedConnectionError):
                await client.start()
            return seen

    seen = asyncio.run(scenario())
    assert seen[Events.UNAUTHORIZED] == []
    assert len(seen[Events.ERROR]) == 1
    logger.info("✅ 403 surfaced as ERROR")


def test_connection_refused_is_an_error():
    async def scenario():
        client = make_client(f"ws://127.0.0.1:{unused_port()}")
        seen = record(client)
        with pytest.raises(FeedConnectionError):
            await client.start()
        return seen, client.get_connection()

    seen, connection = asyncio.run(scenario())
    assert len(seen[Events.ERROR]) == 1
    (error,) = seen[Events.ERROR][0]
    assert isinstance(error, OSError)
    assert len(seen[Events.CLOSED]) == 1
    assert connection is None
    logger.info("✅ Transport failure surfaced as ERROR")


def test_malformed_frame_routed_to_error():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            await client.start()
            await feed.send("{ this is not valid json")
            await feed.send("[1, 2, 3]")
            await feed.send_strike()
            is_open = client.get_connection().is_open()
            client.stop()
            return seen, is_open

    seen, is_open = asyncio.run(scenario())
    assert len(seen[Events.ERROR]) == 2
    assert all(isinstance(args[0], MalformedMessageError) for args in seen[Events.ERROR])
    assert len(seen[Events.STRIKE]) == 1
    assert is_open
    logger.info("✅ Malformed frames reported, connection kept")


def test_stop_during_handshake_rejects_start():
    async def scenario():
        async with MockFeedServer(handshake_delay=0.2) as feed:
            client = make_client(feed.url)
            seen = record(client)
            future = client.start()
            await asyncio.sleep(0.02)
            client.stop()
            with pytest.raises(FeedConnectionError):
                await future
            return seen, client.get_connection()

    seen, connection = asyncio.run(scenario())
    assert connection is None
    assert seen[Events.OPENED] == []
    assert len(seen[Events.CLOSED]) == 1
    logger.info("✅ stop() during handshake rejects start()")


def test_server_close_clears_connection():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url, heartbeat_timeout=100, heartbeat_interval=10)
            seen = record(client)
            await client.start()
            await feed.drop_clients()
            connection = client.get_connection()
            monitoring = client.heartbeat.is_running
            await asyncio.sleep(0.15)
            return seen, connection, monitoring

    seen, connection, monitoring = asyncio.run(scenario())
    assert len(seen[Events.CLOSED]) == 1
    assert connection is None
    assert not monitoring
    assert seen[Events.TIMEOUT] == []
    assert seen[Events.STOPPED] == []
    logger.info("✅ Server close returns client to idle")


def test_start_while_connected_reuses_socket():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            seen = record(client)
            await client.start()
            first = client.get_connection()
            await client.start()
            second = client.get_connection()
            client.stop()
            await asyncio.sleep(0.05)
            return seen, first, second, feed.connection_count

    seen, first, second, connections = asyncio.run(scenario())
    assert first is second
    assert connections == 1
    assert len(seen[Events.STARTED]) == 2
    logger.info("✅ Second start() reuses the socket")


def test_overlapping_starts_share_handshake():
    async def scenario():
        async with MockFeedServer(handshake_delay=0.05) as feed:
            client = make_client(feed.url)
            first = client.start()
            second = client.start()
            await asyncio.gather(first, second)
            client.stop()
            return feed.connection_count

    assert asyncio.run(scenario()) == 1
    logger.info("✅ Overlapping start() calls resolve from one socket")


def test_stop_without_connection_emits_stopped():
    async def scenario():
        client = ThunderClient(url="ws://127.0.0.1:1")
        seen = record(client)
        client.stop()
        client.stop(suppress_notification=True)
        return seen

    seen = asyncio.run(scenario())
    assert len(seen[Events.STOPPED]) == 1
    assert seen[Events.CLOSED] == []
    logger.info("✅ stop() while idle only notifies")


def test_subscriber_error_does_not_kill_connection():
    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            strikes = []

            def broken(strike):
                raise RuntimeError("observer failed")

            client.subscribe(Events.STRIKE, broken)
            client.subscribe(Events.STRIKE, strikes.append)
            await client.start()
            await feed.send_strike()
            client.unsubscribe(Events.STRIKE, broken)
            await feed.send_strike()
            is_open = client.get_connection().is_open()
            client.stop()
            return strikes, is_open

    strikes, is_open = asyncio.run(scenario())
    assert len(strikes) == 1
    assert is_open
    logger.info("✅ Observer errors are contained")


def test_close_before_open_is_a_no_op():
    async def scenario():
        closed = []
        connection = FeedSocket("ws://127.0.0.1:1")
        connection.on_close_callback = lambda: closed.append(True)
        connection.close()
        return connection.get_state(), closed

    state, closed = asyncio.run(scenario())
    assert state is ConnectionState.IDLE
    assert closed == []
    logger.info("✅ close() on an unopened socket does nothing")


def test_configured_level_and_file_reach_components(tmp_path):
    """DEBUG set on the shared logger shows client heartbeats in the log file"""
    log_file = tmp_path / "logs" / "thunder.log"

    async def scenario():
        async with MockFeedServer() as feed:
            client = make_client(feed.url)
            await client.start()
            await feed.send_heartbeat()
            await asyncio.sleep(0.05)
            client.stop()

    setup_logger(ROOT_LOGGER, "DEBUG", str(log_file))
    try:
        console_level = logging.getLogger(ROOT_LOGGER).handlers[0].level
        effective = component_logger("client").getEffectiveLevel()
        asyncio.run(scenario())
        contents = log_file.read_text(encoding="utf-8")
    finally:
        setup_logger(ROOT_LOGGER, "INFO")

    assert console_level == logging.DEBUG
    assert effective == logging.DEBUG
    assert "thunder.client - DEBUG - Heartbeat received" in contents
    assert "thunder.socket - INFO - Connected" in contents
    logger.info("✅ Component loggers follow the configured level and file")


def main():
    """Run all tests"""
    logger.info("=" * 60)
    logger.info("FEED CLIENT CONNECTION TESTS")
    logger.info("=" * 60)
    sys.exit(pytest.main([__file__, "-q"]))


if __name__ == "__main__":
    main()
