"""Mux webhook event schemas.

Only the events the recording pipeline consumes are modelled. Unknown fields
are ignored so Mux can extend payloads without breaking parsing.

References:
- https://docs.mux.com/guides/video/listen-for-webhooks
- https://docs.mux.com/api-reference/video#tag/webhooks
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, Field


class MuxEventType(str, Enum):
    """Mux webhook event types handled by the recording pipeline."""

    LIVE_STREAM_RECORDING = "video.live_stream.recording"
    ASSET_READY = "video.asset.ready"
    ASSET_ERRORED = "video.asset.errored"


def _timestamp_to_string(v: Any) -> Any:
    # Mux sends unix seconds in some payloads and ISO strings in others
    if isinstance(v, int):
        return str(v)
    return v


MuxTimestamp = Annotated[str | None, BeforeValidator(_timestamp_to_string)]


class MuxEnvironment(BaseModel):
    name: str
    id: str


class MuxLiveStreamData(BaseModel):
    """`data` of a live stream event."""

    id: str = Field(..., description="Mux live stream id, stored as the stream's mux_live_stream_id")
    created_at: MuxTimestamp = None
    status: str | None = None
    passthrough: str | None = None
    active_asset_id: str | None = Field(None, description="Asset being recorded right now")
    recent_asset_ids: list[str] = Field(default_factory=list)


class MuxAssetData(BaseModel):
    """`data` of an asset event."""

    id: str = Field(..., description="Asset id")
    status: str = Field(..., description="preparing / ready / errored")
    created_at: MuxTimestamp = None
    duration: float | None = None
    playback_ids: list[dict[str, Any]] = Field(default_factory=list)
    passthrough: str | None = None
    # Correlation ids: one of these matches what the stream recorded earlier
    upload_id: str | None = None
    live_stream_id: str | None = None
    errors: dict[str, Any] | None = None

    @property
    def first_playback_id(self) -> str | None:
        return next((item["id"] for item in self.playback_ids if item.get("id")), None)


class MuxEvent(BaseModel):
    """Envelope fields shared by every Mux webhook event."""

    type: str
    id: str = Field(..., description="Event id")
    created_at: MuxTimestamp = None
    environment: MuxEnvironment | None = None
    object: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None


class LiveStreamRecordingEvent(MuxEvent):
    type: Literal[MuxEventType.LIVE_STREAM_RECORDING] = MuxEventType.LIVE_STREAM_RECORDING
    data: MuxLiveStreamData


class AssetReadyEvent(MuxEvent):
    type: Literal[MuxEventType.ASSET_READY] = MuxEventType.ASSET_READY
    data: MuxAssetData


class AssetErroredEvent(MuxEvent):
    type: Literal[MuxEventType.ASSET_ERRORED] = MuxEventType.ASSET_ERRORED
    data: MuxAssetData
