# Thunder Monitor - Main Entry Point
# Lightning strike feed listener

"""
Thunder Monitor

Runs one ThunderClient until interrupted:
WebSocket -> ThunderClient -> notifications -> log / stats

- Logs every strike (position, peak current, cloud indicator)
- Counts heartbeats, timeouts and errors
- Stops on rejected credentials or SIGINT/SIGTERM
"""

import asyncio
import signal
import os
from pathlib import Path
from datetime import datetime
from dotenv import load_dotenv
import yaml

from thunder.client import ThunderClient
from thunder.config import ClientConfig
from thunder.connection.websocket_client import FeedConnectionError
from thunder.events import Events
from thunder.processors.message_parser import Strike
from thunder.utils.logger import ROOT_LOGGER, component_logger, setup_logger

# Global flag for shutdown
shutdown_event = asyncio.Event()

class ThunderMonitor:
    """
    Main application class - wires the client to logging and stats
    """

    def __init__(self, config: dict):
        """Initialize client from config"""
        self.config = config
        log_config = config.get('logging', {})
        # Every thunder.* logger (client, socket, heartbeat) follows this
        setup_logger(
            ROOT_LOGGER,
            log_config.get('level', 'INFO'),
            log_config.get('file')
        )
        self.logger = component_logger("monitor")

        feed_config = config.get('feed', {})
        self.stats_interval = config.get('stats', {}).get('interval_seconds', 300)

        self.client = ThunderClient(config=ClientConfig.from_env(
            url=feed_config.get('url'),
            username=feed_config.get('username'),
            password=feed_config.get('password'),
            heartbeat_timeout=feed_config.get('heartbeat_timeout'),
            heartbeat_interval=feed_config.get('heartbeat_interval')
        ))

        self.stats = {
            'strikes': 0,
            'heartbeats': 0,
            'timeouts': 0,
            'errors': 0,
            'connections_opened': 0,
            'last_heartbeat': None
        }
        self.start_time = datetime.now()

        self.client.subscribe(Events.STRIKE, self.on_strike)
        self.client.subscribe(Events.HEARTBEAT, self.on_heartbeat)
        self.client.subscribe(Events.OPENED, self.on_opened)
        self.client.subscribe(Events.CLOSED, self.on_closed)
        self.client.subscribe(Events.TIMEOUT, self.on_timeout)
        self.client.subscribe(Events.ERROR, self.on_error)
        self.client.subscribe(Events.UNAUTHORIZED, self.on_unauthorized)

    def on_strike(self, data: dict):
        self.stats['strikes'] += 1
        strike = Strike.from_dict(data)
        if strike.position and strike.meta:
            self.logger.info(
                f"⚡ Strike {strike.time} [{strike.country_code}] "
                f"lat={strike.position.lat} lon={strike.position.lon} "
                f"peak={strike.meta.peak_current}kA "
                f"{'cloud' if strike.meta.cloud_indicator else 'ground'}"
            )
        else:
            self.logger.info(f"⚡ Strike {strike.time} [{strike.country_code}]")

    def on_heartbeat(self, beat_time: datetime):
        self.stats['heartbeats'] += 1
        self.stats['last_heartbeat'] = beat_time
        self.logger.debug(f"Heartbeat at {beat_time.isoformat()}")

    def on_opened(self):
        self.stats['connections_opened'] += 1
        self.logger.info("✅ Feed connected")

    def on_closed(self):
        self.logger.info("Feed connection closed")

    def on_timeout(self):
        self.stats['timeouts'] += 1
        self.logger.warning("⚠️ Heartbeat timeout - reconnecting")

    def on_error(self, error: Exception):
        self.stats['errors'] += 1
        self.logger.error(f"❌ Feed error: {error}")

    def on_unauthorized(self):
        self.logger.error("❌ Feed rejected credentials - check SMHI_USERNAME / SMHI_PASSWORD")
        shutdown_event.set()

    async def stats_reporter(self):
        """Background task: report statistics"""
        while not shutdown_event.is_set():
            await asyncio.sleep(self.stats_interval)

            uptime = int((datetime.now() - self.start_time).total_seconds())
            last = self.stats['last_heartbeat']
            self.logger.info("📊 Statistics Report:")
            self.logger.info(f"   Uptime: {uptime}s, connections opened: {self.stats['connections_opened']}")
            self.logger.info(f"   Strikes: {self.stats['strikes']}, heartbeats: {self.stats['heartbeats']}")
            self.logger.info(f"   Timeouts: {self.stats['timeouts']}, errors: {self.stats['errors']}")
            self.logger.info(f"   Last heartbeat: {last.isoformat() if last else 'never'}")

    async def run(self):
        """Run until shutdown"""
        self.logger.info("=" * 60)
        self.logger.info("🚀 Thunder Monitor - Starting")
        self.logger.info("=" * 60)
        self.logger.info(f"Feed: {self.client.config.url}")

        try:
            await self.client.start()
        except FeedConnectionError as e:
            self.logger.error(f"❌ Failed to connect: {e}")
            self.client.stop()
            return

        reporter = asyncio.create_task(self.stats_reporter())
        self.logger.info("Press Ctrl+C to stop")

        await shutdown_event.wait()

        self.logger.info("Shutting down...")
        self.client.stop()
        reporter.cancel()
        await asyncio.gather(reporter, return_exceptions=True)
        self.logger.info("✅ Shutdown complete")

def validate_config(config: dict) -> tuple[bool, list[str]]:
    """
    Validate configuration structure

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    feed = config.get('feed', {})
    if not isinstance(feed, dict):
        errors.append("Config error: feed must be a mapping")
        feed = {}

    for key in ('heartbeat_timeout', 'heartbeat_interval'):
        value = feed.get(key)
        if value is not None and (not isinstance(value, int) or value <= 0):
            errors.append(f"Config error: feed.{key} must be a positive number of milliseconds")

    interval = config.get('stats', {}).get('interval_seconds')
    if interval is not None and (not isinstance(interval, (int, float)) or interval <= 0):
        errors.append("Config error: stats.interval_seconds must be a positive number")

    return (len(errors) == 0, errors)

def load_config() -> dict:
    """
    Load configuration from files

    config/secrets.env supplies SMHI_* environment variables;
    config/config.yaml (optional) supplies explicit overrides.
    """
    project_root = Path(__file__).parent
    load_dotenv(project_root / "config" / "secrets.env")

    config_path = Path(os.getenv('THUNDER_CONFIG', project_root / "config" / "config.yaml"))
    if config_path.exists():
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    else:
        config = {}

    config.setdefault('feed', {})
    config.setdefault('stats', {'interval_seconds': 300})
    config.setdefault('logging', {'level': 'INFO'})

    return config

def handle_shutdown(signum=None, frame=None):
    """Handle shutdown signals"""
    print("\n🛑 Received shutdown signal")
    shutdown_event.set()

async def main():
    """Main entry point"""
    setup_logger(ROOT_LOGGER, "INFO")
    logger = component_logger("main")

    try:
        logger.info("Loading configuration...")
        config = load_config()

        is_valid, errors = validate_config(config)
        if not is_valid:
            logger.error("❌ Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            return

        app = ThunderMonitor(config)

        if not app.client.config.username:
            logger.warning("SMHI_USERNAME not configured - the feed will likely reject the connection")

        await app.run()

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise

if __name__ == "__main__":
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
