"""Beanie ODM schemas for MongoDB collections."""

from .init import DOCUMENT_MODELS, init_beanie_odm
from .stream import HostInvite, Stream, StreamHost
from .stream_state import EgressStatus, HostRole, RecordingStatus, StreamStatus, StreamType

__all__ = [
    "DOCUMENT_MODELS",
    "EgressStatus",
    "HostInvite",
    "HostRole",
    "RecordingStatus",
    "Stream",
    "StreamHost",
    "StreamStatus",
    "StreamType",
    "init_beanie_odm",
]
