from pydantic import BaseModel, Field

from app.domain.live.stream.stream_models import StreamResponse
from app.schemas import HostRole, StreamType


class CreateStreamIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    stream_type: StreamType = StreamType.LIVEKIT_ROOM
    max_hosts: int | None = Field(None, ge=1, le=16)


class HostTokenIn(BaseModel):
    display_name: str | None = Field(None, max_length=100)


class JoinStreamIn(BaseModel):
    token: str | None = Field(None, description="Invite token; omit when the owner joins")


class AddHostIn(BaseModel):
    user_id: str = Field(..., min_length=1)


class CreateInviteIn(BaseModel):
    role: HostRole = HostRole.HOST
    max_uses: int = Field(1, ge=1, le=100)
    expires_in_hours: int | None = Field(None, description="<= 0 means never expires")


class StartEgressIn(BaseModel):
    layout: str = "speaker"


class LeaveStreamOut(BaseModel):
    host_id: str
    stream: StreamResponse


class StopEgressOut(BaseModel):
    egress_id: str
    stopped: bool
