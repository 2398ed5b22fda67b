"""Domain enumerations for the live broadcast service."""
from __future__ import annotations

from enum import Enum


class StreamStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"


class StreamType(str, Enum):
    """Known playback transports. Stored as free text, so others are accepted."""
    HLS = "hls"
    WEBRTC = "webrtc"
    MP4 = "mp4"
