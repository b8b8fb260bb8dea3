# Message Parser - JSON Parsing
# Feed frames: heartbeats (countryCode "ZZ") and lightning strikes

"""
Message Parser Module

Responsibilities:
- Parse JSON text frames from the feed
- Classify frames as heartbeat or strike
- Typed views (dataclasses) over strike payloads
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

# Heartbeats are the only frames carrying this country code
HEARTBEAT_COUNTRY_CODE = "ZZ"


class MessageType(Enum):
    """Feed message types"""
    HEARTBEAT = "heartbeat"
    STRIKE = "strike"


class MalformedMessageError(ValueError):
    """Raised when a frame is not a JSON object"""


@dataclass
class Position:
    """Strike position"""
    lat: float
    lon: float
    proj: str  # e.g. "EPSG:4326"


@dataclass
class Meta:
    """Strike measurement metadata"""
    peak_current: float
    cloud_indicator: int  # 1 = cloud-to-cloud, 0 = cloud-to-ground


@dataclass
class Strike:
    """Lightning strike data structure"""
    time: str
    country_code: str
    position: Optional[Position]
    meta: Optional[Meta]
    raw_data: dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Strike":
        """
        Build a typed view of a strike payload

        Missing pos/meta sections give None; the payload is not validated.
        """
        pos = data.get("pos")
        meta = data.get("meta")
        return cls(
            time=data.get("time", ""),
            country_code=data.get("countryCode", ""),
            position=Position(
                lat=pos.get("lat"),
                lon=pos.get("lon"),
                proj=pos.get("proj")
            ) if isinstance(pos, dict) else None,
            meta=Meta(
                peak_current=meta.get("peakCurrent"),
                cloud_indicator=meta.get("cloudIndicator")
            ) if isinstance(meta, dict) else None,
            raw_data=data
        )


def parse_message(raw_message: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse raw frame into a dict

    Args:
        raw_message: Text (or UTF-8 bytes) frame from the WebSocket

    Returns:
        Parsed JSON object

    Raises:
        MalformedMessageError: If the frame is not valid JSON or not an object
    """
    try:
        data = json.loads(raw_message)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessageError(f"Invalid JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected JSON object, got {type(data).__name__}")

    return data


def classify(data: Dict[str, Any]) -> MessageType:
    """Heartbeat if countryCode is "ZZ", strike otherwise"""
    if data.get("countryCode") == HEARTBEAT_COUNTRY_CODE:
        return MessageType.HEARTBEAT
    return MessageType.STRIKE
