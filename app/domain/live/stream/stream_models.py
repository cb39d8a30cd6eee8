"""Stream domain models."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from app.schemas import EgressStatus, HostRole, RecordingStatus, StreamStatus, StreamType


class StreamResponse(BaseModel):
    """Stream response model."""

    stream_id: str
    owner_id: str
    title: str
    description: str | None = None

    status: StreamStatus = StreamStatus.CREATED
    stream_type: StreamType = StreamType.LIVEKIT_ROOM
    max_hosts: int = 4

    recording_status: RecordingStatus = RecordingStatus.NONE
    recording_id: str | None = None
    recording_url: str | None = None
    recording_asset_id: str | None = None

    room_name: str | None = None
    rtmp_stream_key: str | None = None
    mux_live_stream_id: str | None = None
    playback_id: str | None = None
    egress_id: str | None = None

    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: int | None = None


class StreamHostResponse(BaseModel):
    """Host membership response model."""

    host_id: str
    stream_id: str
    user_id: str
    role: HostRole = HostRole.HOST
    invite_id: str | None = None
    joined_at: datetime
    left_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.left_at is None


class HostInviteResponse(BaseModel):
    """Host invite response model."""

    invite_id: str
    stream_id: str
    created_by: str
    token: str
    role: HostRole = HostRole.HOST
    max_uses: int = 1
    used_count: int = 0
    expires_at: datetime | None = None
    is_active: bool = True
    created_at: datetime

    def is_usable(self, now: datetime) -> bool:
        """Active, not used up and not expired at `now`."""
        if not self.is_active or self.used_count >= self.max_uses:
            return False
        return self.expires_at is None or self.expires_at > now


class StreamCreateParams(BaseModel):
    """Parameters for creating a stream."""

    owner_id: str
    title: str
    description: str | None = None
    stream_type: StreamType = StreamType.LIVEKIT_ROOM
    max_hosts: int | None = Field(default=None, ge=1)


class InviteCreateParams(BaseModel):
    """Parameters for creating a host invite."""

    role: HostRole = HostRole.HOST
    max_uses: int = Field(default=1, ge=1)
    # <= 0 means the invite never expires; None uses the configured default
    expires_in_hours: int | None = None


class InviteCreatedResponse(BaseModel):
    invite: HostInviteResponse
    invite_url: str


class RoomTokenResponse(BaseModel):
    """Participant credential for the stream's room."""

    token: str
    room_name: str
    server_url: str | None = None
    can_publish: bool


class EgressJob(BaseModel):
    """Egress job as reported by the media room service."""

    egress_id: str
    room_name: str | None = None
    status: EgressStatus
    raw_status: int
    started_at: datetime | None = None
    updated_at: datetime | None = None
    ended_at: datetime | None = None
    error: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_label(self) -> str:
        if self.status == EgressStatus.UNKNOWN:
            return f"UNKNOWN({self.raw_status})"
        return self.status.name

    @property
    def is_active(self) -> bool:
        return self.status in {EgressStatus.PENDING, EgressStatus.STARTING, EgressStatus.ACTIVE}


class EgressStartResponse(BaseModel):
    egress_id: str
    rtmp_url: str
    playback_id: str | None = None
    already_active: bool = False


class EgressStatusResponse(BaseModel):
    stream_id: str
    egress: EgressJob | None = None


class RoomHealth(BaseModel):
    """Participant view of the stream's media room.

    `reachable` is False when the room service could not be queried; the
    counts are then zero rather than known to be zero.
    """

    room_name: str | None = None
    has_room: bool = False
    reachable: bool = False
    publishers: int = 0
    viewers: int = 0
    total_participants: int = 0
    egress_active: bool = False


class MediaHealth(BaseModel):
    """Ingest view of the stream's Mux live stream."""

    live_stream_id: str | None = None
    has_live_stream: bool = False
    playback_id: str | None = None
    status: str = "unknown"
    recent_asset_ids: list[str] = Field(default_factory=list)


class StreamHealthResponse(BaseModel):
    stream_id: str
    title: str
    status: StreamStatus
    stream_type: StreamType
    duration: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    host_count: int = 0
    recording_status: RecordingStatus = RecordingStatus.NONE
    room: RoomHealth
    media: MediaHealth
