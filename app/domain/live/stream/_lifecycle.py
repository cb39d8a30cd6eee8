"""Stream lifecycle operations: create, start, end, media access and health."""

import asyncio

from loguru import logger

from app.domain.utils.idgen import new_host_id, new_room_name, new_stream_id
from app.schemas import HostRole, RecordingStatus, StreamStatus, StreamType
from app.schemas.schema_utils import utc_now
from app.utils.app_errors import (
    AppError,
    AppErrorCode,
    HttpStatusCode,
    external_service_error,
    not_found,
)

from ._base import BaseService
from ._egress import EgressController
from .stream_models import (
    EgressStartResponse,
    EgressStatusResponse,
    MediaHealth,
    RoomHealth,
    RoomTokenResponse,
    StreamCreateParams,
    StreamHealthResponse,
    StreamHostResponse,
    StreamResponse,
)
from .stream_state_machine import StreamStateMachine


class LifecycleOperations(BaseService):
    """Drives `Stream.status` through CREATED -> LIVE -> ENDED.

    Every status change is a conditional write on the expected prior status,
    so a stale start can never overwrite a concurrent end.
    """

    def __init__(self, *args, egress: EgressController | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.egress = egress or EgressController(self.livekit)

    # ==================== CREATE / READ ====================

    async def create_stream(self, params: StreamCreateParams) -> StreamResponse:
        """Create a stream and provision its media path.

        - RTMP: a Mux live stream provides the ingest key and playback id
        - LIVEKIT_ROOM: a room is created (best effort) and the owner becomes the first host
        - BROWSER: single host, the owner

        Raises:
            AppError: E_EXTERNAL_SERVICE_ERROR if the Mux live stream cannot be created
        """
        now = utc_now()
        stream_id = new_stream_id()

        max_hosts = params.max_hosts or self._cfg.DEFAULT_MAX_HOSTS
        if params.stream_type == StreamType.BROWSER:
            max_hosts = 1

        stream = StreamResponse(
            stream_id=stream_id,
            owner_id=params.owner_id,
            title=params.title,
            description=params.description,
            stream_type=params.stream_type,
            max_hosts=max_hosts,
            created_at=now,
            updated_at=now,
        )

        if params.stream_type == StreamType.RTMP:
            try:
                live_stream = await self.mux.create_live_stream(passthrough=stream_id)
            except AppError:
                raise
            except Exception as exc:
                logger.error(f"Mux live stream creation failed for stream {stream_id}: {exc}")
                raise external_service_error("Live stream creation", exc) from exc

            stream.mux_live_stream_id = live_stream.id
            stream.rtmp_stream_key = live_stream.stream_key
            stream.playback_id = live_stream.playback_ids[0].id if live_stream.playback_ids else None
        else:
            stream.room_name = new_room_name()
            if params.stream_type == StreamType.LIVEKIT_ROOM:
                await self._ensure_room(stream)

        owner_host = None
        if params.stream_type != StreamType.RTMP:
            owner_host = StreamHostResponse(
                host_id=new_host_id(),
                stream_id=stream_id,
                user_id=params.owner_id,
                role=HostRole.OWNER,
                joined_at=now,
            )

        await self.store.create_stream(stream, owner_host)
        logger.info(
            f"Stream {stream_id} created type={stream.stream_type} owner={stream.owner_id} "
            f"max_hosts={stream.max_hosts}"
        )
        return stream

    async def get_stream(self, stream_id: str) -> StreamResponse:
        return await self._get_stream_or_raise(stream_id)

    async def _ensure_room(self, stream: StreamResponse) -> None:
        """Create the stream's room if the room service does not list it.

        Room service failures are logged and tolerated; the room is created
        again on the next attempt or on first participant join.
        """
        if not stream.room_name:
            return

        try:
            rooms = await self.livekit.list_rooms(names=[stream.room_name])
            if not rooms:
                await self.livekit.create_room(
                    room_name=stream.room_name,
                    max_participants=stream.max_hosts,
                )
        except Exception as exc:
            logger.warning(f"Could not ensure room {stream.room_name} for {stream.stream_id}: {exc}")

    # ==================== TRANSITIONS ====================

    async def start_stream(self, stream_id: str, user_id: str) -> StreamResponse:
        """CREATED -> LIVE by the owner or an active host.

        Raises:
            AppError: E_UNAUTHORIZED, E_ALREADY_BROADCASTING (recoverable),
                E_NOT_FOUND when the stream is missing or already ENDED
        """
        stream = await self._require_owner_or_host(stream_id, user_id)
        self._check_can_start(stream)

        await self._ensure_room(stream)

        updated = await self.store.transition_stream(
            stream_id,
            expected=StreamStatus.CREATED,
            updates={"status": StreamStatus.LIVE, "started_at": utc_now()},
        )
        if updated is None:
            # Lost the race; report what the winner left behind
            self._check_can_start(await self._get_stream_or_raise(stream_id))
            raise not_found(f"Startable stream {stream_id}")

        logger.info(f"Stream {stream_id} is LIVE (started by {user_id})")
        return updated

    @staticmethod
    def _check_can_start(stream: StreamResponse) -> None:
        if stream.status == StreamStatus.LIVE:
            raise AppError(
                AppErrorCode.E_ALREADY_BROADCASTING,
                f"Stream {stream.stream_id} is already live",
                HttpStatusCode.CONFLICT,
                recoverable=True,
            )
        if not StreamStateMachine.can_transition(stream.status, StreamStatus.LIVE):
            raise not_found(f"Startable stream {stream.stream_id}")

    async def end_stream(self, stream_id: str, user_id: str) -> StreamResponse:
        """LIVE -> ENDED by the owner.

        Raises:
            AppError: E_UNAUTHORIZED (not owner), E_NO_ACTIVE_BROADCAST (not LIVE)
        """
        await self._require_owner(stream_id, user_id)
        return await self._end(stream_id, reason=f"ended by owner {user_id}")

    async def handle_host_departure(self, stream_id: str, user_id: str) -> StreamResponse | None:
        """Owner-departure rule: the owner leaving an empty LIVE stream ends it.

        Returns:
            The ended stream, or None when the rule does not apply
        """
        stream = await self.store.get_stream(stream_id)
        if stream is None or stream.owner_id != user_id or stream.status != StreamStatus.LIVE:
            return None

        remaining = await self.store.count_active_hosts(stream_id)
        if remaining > 0:
            logger.info(f"Owner left stream {stream_id}, {remaining} host(s) remain, staying LIVE")
            return None

        try:
            return await self._end(stream_id, reason="owner left with no hosts remaining")
        except AppError as exc:
            if exc.errcode != AppErrorCode.E_NO_ACTIVE_BROADCAST.value:
                raise
            logger.info(f"Stream {stream_id} was ended concurrently")
            return None

    async def _end(self, stream_id: str, reason: str) -> StreamResponse:
        stream = await self._get_stream_or_raise(stream_id)
        if not StreamStateMachine.can_transition(stream.status, StreamStatus.ENDED):
            raise self._no_active_broadcast(stream_id)

        ended_at = utc_now()
        duration = None
        if stream.started_at is not None:
            duration = max(0, int((ended_at - stream.started_at).total_seconds()))

        updated = await self.store.transition_stream(
            stream_id,
            expected=StreamStatus.LIVE,
            updates={"status": StreamStatus.ENDED, "ended_at": ended_at, "duration": duration},
        )
        if updated is None:
            raise self._no_active_broadcast(stream_id)

        logger.info(f"Stream {stream_id} ENDED ({reason}), duration={duration}s")

        # Provisional hint that a recording is expected; never overrides real progress
        hinted = await self.store.update_recording(
            stream_id,
            allowed_from={RecordingStatus.NONE},
            updates={"recording_status": RecordingStatus.UPLOADING},
        )
        if hinted is not None:
            updated = hinted

        if updated.egress_id:
            stopped = await self.egress.stop(updated.egress_id)
            if not stopped:
                logger.warning(
                    f"Egress {updated.egress_id} for ended stream {stream_id} could not be "
                    f"confirmed stopped; left for reconciliation"
                )

        return updated

    @staticmethod
    def _no_active_broadcast(stream_id: str) -> AppError:
        return AppError(
            AppErrorCode.E_NO_ACTIVE_BROADCAST,
            f"Stream {stream_id} is not live",
            HttpStatusCode.CONFLICT,
        )

    # ==================== MEDIA ACCESS ====================

    def _require_room(self, stream: StreamResponse) -> str:
        if not stream.room_name:
            raise AppError(
                AppErrorCode.E_UNSUPPORTED_STREAM_TYPE,
                f"Stream type {stream.stream_type} has no media room",
                HttpStatusCode.BAD_REQUEST,
            )
        return stream.room_name

    async def get_host_token(
        self,
        stream_id: str,
        user_id: str,
        display_name: str | None = None,
    ) -> RoomTokenResponse:
        """Publish credential for the owner or an active host."""
        stream = await self._require_owner_or_host(stream_id, user_id)
        room_name = self._require_room(stream)
        await self._ensure_room(stream)

        token = await self.livekit.create_access_token(
            identity=user_id,
            room=room_name,
            name=display_name,
            can_publish=True,
            can_subscribe=True,
        )
        return RoomTokenResponse(
            token=token,
            room_name=room_name,
            server_url=self.livekit.server_url,
            can_publish=True,
        )

    async def get_viewer_token(self, stream_id: str, user_id: str) -> RoomTokenResponse:
        """Subscribe-only credential for any caller."""
        stream = await self._get_stream_or_raise(stream_id)
        room_name = self._require_room(stream)

        token = await self.livekit.create_access_token(
            identity=f"viewer-{user_id}",
            room=room_name,
            can_publish=False,
            can_subscribe=True,
        )
        return RoomTokenResponse(
            token=token,
            room_name=room_name,
            server_url=self.livekit.server_url,
            can_publish=False,
        )

    # ==================== EGRESS ====================

    async def start_egress(
        self,
        stream_id: str,
        user_id: str,
        layout: str = "speaker",
    ) -> EgressStartResponse:
        """Push the stream's room to its RTMP ingest.

        Returns the already running egress instead of starting a second one.

        Raises:
            AppError: E_UNAUTHORIZED, E_NO_ACTIVE_BROADCAST (not LIVE),
                E_UNSUPPORTED_STREAM_TYPE (no room), E_EXTERNAL_SERVICE_ERROR
        """
        stream = await self._require_owner_or_host(stream_id, user_id)
        if stream.status != StreamStatus.LIVE:
            raise self._no_active_broadcast(stream_id)
        room_name = self._require_room(stream)

        if not stream.rtmp_stream_key:
            try:
                live_stream = await self.mux.create_live_stream(passthrough=stream_id)
            except AppError:
                raise
            except Exception as exc:
                raise external_service_error("Live stream creation", exc) from exc

            stream = await self.store.update_stream(
                stream_id,
                {
                    "mux_live_stream_id": live_stream.id,
                    "rtmp_stream_key": live_stream.stream_key,
                    "playback_id": (
                        live_stream.playback_ids[0].id if live_stream.playback_ids else None
                    ),
                },
            ) or stream

        rtmp_url = self.mux.rtmp_url(stream.rtmp_stream_key or "")

        current = await self.egress.find_latest(room_name)
        if current is not None and current.is_active:
            logger.info(f"Egress {current.egress_id} already active for stream {stream_id}")
            if stream.egress_id != current.egress_id:
                await self.store.update_stream(stream_id, {"egress_id": current.egress_id})
            return EgressStartResponse(
                egress_id=current.egress_id,
                rtmp_url=rtmp_url,
                playback_id=stream.playback_id,
                already_active=True,
            )

        egress_id = await self.egress.start(room_name, [rtmp_url], layout=layout)
        await self.store.update_stream(stream_id, {"egress_id": egress_id})

        return EgressStartResponse(
            egress_id=egress_id,
            rtmp_url=rtmp_url,
            playback_id=stream.playback_id,
        )

    async def get_egress_status(self, stream_id: str) -> EgressStatusResponse:
        """Reconcile the stream's recorded egress against the room service."""
        stream = await self._get_stream_or_raise(stream_id)
        if not stream.room_name:
            return EgressStatusResponse(stream_id=stream_id)

        job = await self.egress.find_latest(stream.room_name)
        if job is not None and job.egress_id != stream.egress_id:
            logger.info(
                f"Stream {stream_id} egress reconciled {stream.egress_id} -> {job.egress_id}"
            )
            await self.store.update_stream(stream_id, {"egress_id": job.egress_id})

        return EgressStatusResponse(stream_id=stream_id, egress=job)

    async def stop_egress(self, egress_id: str) -> bool:
        return await self.egress.stop(egress_id)

    # ==================== HEALTH ====================

    async def get_stream_health(self, stream_id: str) -> StreamHealthResponse:
        """Stream summary with live room and ingest state.

        The room service and Mux are queried concurrently. A failing source is
        logged and reported with its defaults; it never fails the whole read.
        """
        stream = await self._get_stream_or_raise(stream_id)

        host_count, room, media = await asyncio.gather(
            self.store.count_active_hosts(stream_id),
            self._room_health(stream),
            self._media_health(stream),
        )

        return StreamHealthResponse(
            stream_id=stream.stream_id,
            title=stream.title,
            status=stream.status,
            stream_type=stream.stream_type,
            duration=stream.duration,
            started_at=stream.started_at,
            ended_at=stream.ended_at,
            host_count=host_count,
            recording_status=stream.recording_status,
            room=room,
            media=media,
        )

    async def _room_health(self, stream: StreamResponse) -> RoomHealth:
        health = RoomHealth(
            room_name=stream.room_name,
            has_room=bool(stream.room_name),
            egress_active=bool(stream.egress_id),
        )
        if not stream.room_name:
            return health

        try:
            participants = await self.livekit.list_participants(stream.room_name)
        except Exception as exc:
            logger.warning(f"Room health unavailable for stream {stream.stream_id}: {exc}")
            return health

        publishers = sum(1 for p in participants if p.permission and p.permission.can_publish)
        health.reachable = True
        health.publishers = publishers
        health.viewers = len(participants) - publishers
        health.total_participants = len(participants)
        return health

    async def _media_health(self, stream: StreamResponse) -> MediaHealth:
        health = MediaHealth(
            live_stream_id=stream.mux_live_stream_id,
            has_live_stream=bool(stream.mux_live_stream_id),
            playback_id=stream.playback_id,
        )
        if not stream.mux_live_stream_id:
            return health

        try:
            live_stream = await self.mux.get_live_stream(stream.mux_live_stream_id)
        except Exception as exc:
            logger.warning(f"Ingest health unavailable for stream {stream.stream_id}: {exc}")
            return health

        health.status = live_stream.status or "unknown"
        health.recent_asset_ids = live_stream.recent_asset_ids
        return health
