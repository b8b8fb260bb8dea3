# Config - Feed client configuration
# Explicit arguments, then environment, then built-in defaults

"""
Config Module

Responsibilities:
- Hold the immutable client configuration
- Resolve each field from argument / environment / default
- Reject unusable heartbeat durations early
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_URL = "ws://data-push.smhi.se/api/category/lightning-strike/version/1/country-code/SE/data.json"
DEFAULT_HEARTBEAT_TIMEOUT = 35000  # ms
DEFAULT_HEARTBEAT_INTERVAL = 1000  # ms

ENV_URL = "SMHI_URL"
ENV_USERNAME = "SMHI_USERNAME"
ENV_PASSWORD = "SMHI_PASSWORD"
ENV_HEARTBEAT_TIMEOUT = "SMHI_HEARTBEAT_TIMEOUT"
ENV_HEARTBEAT_INTERVAL = "SMHI_HEARTBEAT_INTERVAL"


@dataclass(frozen=True)
class ClientConfig:
    """Feed client configuration (durations in milliseconds)"""
    url: str = DEFAULT_URL
    username: Optional[str] = None
    password: Optional[str] = None
    heartbeat_timeout: int = DEFAULT_HEARTBEAT_TIMEOUT
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL

    def __post_init__(self):
        for name in ("heartbeat_timeout", "heartbeat_interval"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive number of milliseconds, got {value!r}")

    def __repr__(self) -> str:
        # Keep the password out of logs
        return (
            f"ClientConfig(url={self.url!r}, username={self.username!r}, "
            f"password={'***' if self.password else None}, "
            f"heartbeat_timeout={self.heartbeat_timeout}, "
            f"heartbeat_interval={self.heartbeat_interval})"
        )

    @classmethod
    def from_env(
        cls,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        heartbeat_timeout: Optional[int] = None,
        heartbeat_interval: Optional[int] = None
    ) -> "ClientConfig":
        """
        Build config, falling back to environment variables for any
        argument left as None

        Args:
            url: Feed WebSocket URL (SMHI_URL)
            username: Feed username (SMHI_USERNAME)
            password: Feed password (SMHI_PASSWORD)
            heartbeat_timeout: Max silence in ms (SMHI_HEARTBEAT_TIMEOUT)
            heartbeat_interval: Poll interval in ms (SMHI_HEARTBEAT_INTERVAL)

        Raises:
            ValueError: If a duration is not a positive integer
        """
        return cls(
            url=url if url is not None else os.getenv(ENV_URL, DEFAULT_URL),
            username=username if username is not None else os.getenv(ENV_USERNAME),
            password=password if password is not None else os.getenv(ENV_PASSWORD),
            heartbeat_timeout=(
                heartbeat_timeout if heartbeat_timeout is not None
                else _env_int(ENV_HEARTBEAT_TIMEOUT, DEFAULT_HEARTBEAT_TIMEOUT)
            ),
            heartbeat_interval=(
                heartbeat_interval if heartbeat_interval is not None
                else _env_int(ENV_HEARTBEAT_INTERVAL, DEFAULT_HEARTBEAT_INTERVAL)
            )
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from None
