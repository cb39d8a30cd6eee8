"""Common enums used across stream schemas."""

from enum import Enum


class StreamStatus(str, Enum):
    """Broadcast lifecycle status.

    CREATED → LIVE → ENDED

    - CREATED: Stream record exists, nothing is being broadcast yet.
    - LIVE: Broadcast started by the owner or an active host.
    - ENDED: Broadcast ended by the owner, or by the owner leaving an empty room.

    ENDED is terminal.
    """

    CREATED = "created"
    LIVE = "live"
    ENDED = "ended"

    def __str__(self) -> str:
        return self.value


class StreamType(str, Enum):
    """How media reaches the stream. Immutable after creation."""

    RTMP = "rtmp"
    LIVEKIT_ROOM = "livekit_room"
    BROWSER = "browser"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def multi_host_types(cls) -> set["StreamType"]:
        """Types that admit hosts besides the owner."""
        return {cls.LIVEKIT_ROOM}


class RecordingStatus(str, Enum):
    """Recording ingestion status.

    NONE → UPLOADING → PROCESSING → READY
                 ↓            ↓
               FAILED ←───────┘

    READY is terminal. FAILED may be retried (UPLOADING) or overtaken by a
    late success report (READY).
    """

    NONE = "none"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class HostRole(str, Enum):
    OWNER = "owner"
    HOST = "host"

    def __str__(self) -> str:
        return self.value


class EgressStatus(str, Enum):
    """Egress job status as reported by the media room service."""

    PENDING = "pending"
    STARTING = "starting"
    ACTIVE = "active"
    ENDING = "ending"
    COMPLETE = "complete"
    FAILED = "failed"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


__all__ = ["EgressStatus", "HostRole", "RecordingStatus", "StreamStatus", "StreamType"]
