"""Stream ODM schemas."""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field, field_validator
from pymongo import ASCENDING, DESCENDING, IndexModel

from .schema_utils import parse_mongo_datetime, utc_now
from .stream_state import HostRole, RecordingStatus, StreamStatus, StreamType


class Stream(Document):
    """Stream document model."""

    stream_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    owner_id: Indexed(str)  # type: ignore[valid-type]
    title: str
    description: str | None = None

    status: StreamStatus = StreamStatus.CREATED
    stream_type: StreamType = StreamType.LIVEKIT_ROOM
    max_hosts: int = 4

    # Recording ingestion
    recording_status: RecordingStatus = RecordingStatus.NONE
    recording_id: str | None = None
    recording_url: str | None = None
    recording_asset_id: str | None = None

    # External media handles
    room_name: str | None = None
    rtmp_stream_key: str | None = None
    mux_live_stream_id: str | None = None
    playback_id: str | None = None
    egress_id: str | None = None

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: int | None = None

    @field_validator("created_at", "updated_at", "started_at", "ended_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    class Settings:
        name = "streams"
        indexes = [
            IndexModel([("recording_id", ASCENDING)], sparse=True),
            IndexModel([("recording_asset_id", ASCENDING)], sparse=True),
            IndexModel([("mux_live_stream_id", ASCENDING)], sparse=True),
            IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)]),
        ]


class StreamHost(Document):
    """Host membership row. Rows are closed with `left_at`, never deleted."""

    host_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    stream_id: str
    user_id: str
    role: HostRole = HostRole.HOST
    invite_id: str | None = None
    joined_at: datetime = Field(default_factory=utc_now)
    left_at: datetime | None = None
    # Mirrors `left_at is None`; backs the one-active-row-per-user unique index
    active: bool = True

    @field_validator("joined_at", "left_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    class Settings:
        name = "stream_hosts"
        indexes = [
            IndexModel(
                [("stream_id", ASCENDING), ("user_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"active": True},
                name="uniq_active_host",
            ),
            IndexModel([("stream_id", ASCENDING), ("joined_at", ASCENDING)]),
        ]


class HostInvite(Document):
    """Host invite document model."""

    invite_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    stream_id: Indexed(str)  # type: ignore[valid-type]
    created_by: str
    token: Indexed(str, unique=True)  # type: ignore[valid-type]
    role: HostRole = HostRole.HOST
    max_uses: int = 1
    used_count: int = 0
    expires_at: datetime | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("expires_at", "created_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_mongo_datetime(v)

    class Settings:
        name = "host_invites"
