"""Stream domain service - orchestration over an injected entity store."""

from app.schemas import HostRole
from app.services.integrations.livekit_service import LivekitService
from app.services.integrations.mux_service import MuxService
from app.services.stream_store import StreamStore

from ._egress import EgressController
from ._lifecycle import LifecycleOperations
from ._membership import MembershipOperations
from ._recording import RecordingOperations, RecordingPoller
from .stream_models import (
    EgressJob,
    EgressStartResponse,
    EgressStatusResponse,
    HostInviteResponse,
    InviteCreatedResponse,
    InviteCreateParams,
    RoomTokenResponse,
    StreamCreateParams,
    StreamHealthResponse,
    StreamHostResponse,
    StreamResponse,
)


class StreamService:
    """Facade over lifecycle, membership, egress and recording operations."""

    def __init__(
        self,
        store: StreamStore,
        livekit: LivekitService | None = None,
        mux: MuxService | None = None,
        egress: EgressController | None = None,
        poller: RecordingPoller | None = None,
    ):
        self._lifecycle = LifecycleOperations(store, livekit, mux, egress=egress)
        self._membership = MembershipOperations(
            store, livekit, mux, on_departure=self._lifecycle.handle_host_departure
        )
        self._recording = RecordingOperations(store, livekit, mux, poller=poller)

    @property
    def egress(self) -> EgressController:
        return self._lifecycle.egress

    @property
    def poller(self) -> RecordingPoller:
        return self._recording.poller

    async def shutdown(self) -> None:
        await self._recording.poller.shutdown()

    # ==================== STREAMS ====================

    async def create_stream(self, params: StreamCreateParams) -> StreamResponse:
        """Create a stream.

        Raises AppError if the media path cannot be provisioned.
        """
        return await self._lifecycle.create_stream(params)

    async def get_stream(self, stream_id: str) -> StreamResponse:
        """Get a single stream by stream_id.

        Raises AppError if stream not found.
        """
        return await self._lifecycle.get_stream(stream_id)

    async def start_stream(self, stream_id: str, user_id: str) -> StreamResponse:
        return await self._lifecycle.start_stream(stream_id, user_id)

    async def end_stream(self, stream_id: str, user_id: str) -> StreamResponse:
        return await self._lifecycle.end_stream(stream_id, user_id)

    async def get_host_token(
        self, stream_id: str, user_id: str, display_name: str | None = None
    ) -> RoomTokenResponse:
        return await self._lifecycle.get_host_token(stream_id, user_id, display_name)

    async def get_viewer_token(self, stream_id: str, user_id: str) -> RoomTokenResponse:
        return await self._lifecycle.get_viewer_token(stream_id, user_id)

    async def get_stream_health(self, stream_id: str) -> StreamHealthResponse:
        return await self._lifecycle.get_stream_health(stream_id)

    # ==================== HOSTS ====================

    async def join(
        self,
        stream_id: str,
        user_id: str,
        token: str | None = None,
        caller_id: str | None = None,
    ) -> StreamHostResponse:
        return await self._membership.join(stream_id, user_id, token=token, caller_id=caller_id)

    async def leave(self, stream_id: str, user_id: str) -> StreamHostResponse:
        """Leave a stream; the owner leaving an empty LIVE stream ends it."""
        return await self._membership.leave(stream_id, user_id)

    async def remove_host(self, stream_id: str, host_id: str, caller_id: str) -> StreamHostResponse:
        return await self._membership.remove_host(stream_id, host_id, caller_id)

    async def list_hosts(self, stream_id: str) -> list[StreamHostResponse]:
        return await self._membership.list_hosts(stream_id)

    # ==================== INVITES ====================

    async def create_invite(
        self,
        stream_id: str,
        creator_id: str,
        params: InviteCreateParams | None = None,
    ) -> InviteCreatedResponse:
        return await self._membership.create_invite(
            stream_id, creator_id, params or InviteCreateParams(role=HostRole.HOST)
        )

    async def list_invites(self, stream_id: str, caller_id: str) -> list[HostInviteResponse]:
        return await self._membership.list_invites(stream_id, caller_id)

    async def revoke_invite(self, invite_id: str, caller_id: str) -> HostInviteResponse:
        return await self._membership.revoke_invite(invite_id, caller_id)

    # ==================== EGRESS ====================

    async def start_egress(
        self, stream_id: str, user_id: str, layout: str = "speaker"
    ) -> EgressStartResponse:
        return await self._lifecycle.start_egress(stream_id, user_id, layout=layout)

    async def get_egress_status(self, stream_id: str) -> EgressStatusResponse:
        return await self._lifecycle.get_egress_status(stream_id)

    async def stop_egress(self, egress_id: str) -> bool:
        """Stop an egress with retries. False means it could not be confirmed stopped."""
        return await self._lifecycle.stop_egress(egress_id)

    async def list_egress(self, room_name: str | None = None) -> list[EgressJob]:
        return await self._lifecycle.egress.list_active(room_name=room_name)

    # ==================== RECORDING ====================

    async def upload_recording(
        self,
        stream_id: str,
        user_id: str,
        data: bytes,
        content_type: str = "video/webm",
    ) -> StreamResponse:
        return await self._recording.upload_recording(stream_id, user_id, data, content_type)

    async def handle_asset_ready(
        self,
        asset_id: str,
        playback_id: str | None,
        upload_id: str | None = None,
        live_stream_id: str | None = None,
    ) -> StreamResponse | None:
        return await self._recording.handle_asset_ready(
            asset_id, playback_id, upload_id=upload_id, live_stream_id=live_stream_id
        )

    async def handle_asset_errored(
        self,
        asset_id: str,
        upload_id: str | None = None,
        live_stream_id: str | None = None,
    ) -> StreamResponse | None:
        return await self._recording.handle_asset_errored(
            asset_id, upload_id=upload_id, live_stream_id=live_stream_id
        )

    async def handle_live_stream_recording(
        self, live_stream_id: str, asset_id: str | None
    ) -> StreamResponse | None:
        return await self._recording.handle_live_stream_recording(live_stream_id, asset_id)
