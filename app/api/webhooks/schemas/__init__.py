"""Webhook schemas for external providers."""

from app.api.webhooks.schemas.mux import (
    AssetErroredEvent,
    AssetReadyEvent,
    LiveStreamRecordingEvent,
    MuxEventType,
)

__all__ = [
    "AssetErroredEvent",
    "AssetReadyEvent",
    "LiveStreamRecordingEvent",
    "MuxEventType",
]
