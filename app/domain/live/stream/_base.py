"""Base service for stream operations."""

from typing import Any

from loguru import logger

from app.app_config import get_app_environ_config
from app.schemas import RecordingStatus
from app.services.integrations.livekit_service import LivekitService, livekit_service
from app.services.integrations.mux_service import MuxService, mux_service
from app.services.stream_store import StreamStore
from app.utils.app_errors import not_found, unauthorized

from .stream_models import StreamResponse
from .stream_state_machine import RecordingStateMachine


class BaseService:
    """Base service with shared stream operation methods."""

    def __init__(
        self,
        store: StreamStore,
        livekit: LivekitService | None = None,
        mux: MuxService | None = None,
    ):
        """Initialize BaseService with the entity store and provider services."""
        self.store = store
        self.livekit = livekit or livekit_service
        self.mux = mux or mux_service
        self._cfg = get_app_environ_config()

    async def _get_stream_or_raise(self, stream_id: str) -> StreamResponse:
        stream = await self.store.get_stream(stream_id)
        if stream is None:
            raise not_found(f"Stream {stream_id}")
        return stream

    async def _require_owner(self, stream_id: str, user_id: str) -> StreamResponse:
        stream = await self._get_stream_or_raise(stream_id)
        if stream.owner_id != user_id:
            raise unauthorized("Only the stream owner can perform this action")
        return stream

    async def _is_owner_or_host(self, stream: StreamResponse, user_id: str) -> bool:
        if stream.owner_id == user_id:
            return True
        return await self.store.get_active_host(stream.stream_id, user_id) is not None

    async def _require_owner_or_host(self, stream_id: str, user_id: str) -> StreamResponse:
        stream = await self._get_stream_or_raise(stream_id)
        if not await self._is_owner_or_host(stream, user_id):
            raise unauthorized("Only the stream owner or an active host can perform this action")
        return stream

    async def update_recording_status(
        self,
        stream_id: str,
        target: RecordingStatus,
        **fields: Any,
    ) -> StreamResponse | None:
        """
        Merge a recording status report into the stream.

        Public method for recording updates from the upload path, the poller
        and webhooks.

        The write is conditional on the current status being a valid source
        for `target`. A report that lost the race (or repeats the current
        status) is dropped and the stream is returned unchanged.

        Args:
            stream_id: Stream to update
            target: Reported recording status
            **fields: Extra stream fields written with the status

        Returns:
            The stream after the merge, None if the stream does not exist
        """
        sources = RecordingStateMachine.get_valid_sources(target)
        updates = {"recording_status": target, **fields}

        updated = await self.store.update_recording(stream_id, sources, updates)
        if updated is not None:
            logger.info(f"Stream {stream_id} recording status updated to {target}")
            return updated

        current = await self.store.get_stream(stream_id)
        if current is None:
            logger.warning(f"Stream {stream_id} not found while applying recording status {target}")
            return None

        if current.recording_status == target:
            logger.info(f"Stream {stream_id} recording already {target}, skipping")
        else:
            logger.info(
                f"Stream {stream_id} recording report {target} ignored "
                f"(current={current.recording_status})"
            )
        return current
