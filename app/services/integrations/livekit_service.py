"""LiveKit media room adapter.

Wraps the `livekit-api` package for the operations the stream core needs:
rooms, participant credentials and room composite egress to RTMP.

Usage:
    from app.services.integrations.livekit_service import livekit_service

    token = await livekit_service.create_access_token(
        identity="u.123",
        room="stream-01h...",
        can_publish=False,
    )
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from livekit import api
from loguru import logger

from app.app_config import get_app_environ_config
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

DEFAULT_TOKEN_TTL = timedelta(hours=6)


def _not_configured(what: str) -> AppError:
    logger.error(f"LiveKit {what} not configured")
    return AppError(
        errcode=AppErrorCode.E_INTERNAL_ERROR,
        errmesg=f"Media room service {what} must be configured.",
        status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
    )


class LivekitService:
    """Async adapter over the LiveKit server API.

    A client is opened per call; Twirp errors from the server propagate to the
    caller unchanged.
    """

    def __init__(self) -> None:
        self._cfg = get_app_environ_config()

    @property
    def server_url(self) -> str | None:
        return self._cfg.LIVEKIT_URL

    def _credentials(self) -> tuple[str, str]:
        if not self._cfg.LIVEKIT_API_KEY or not self._cfg.LIVEKIT_API_SECRET:
            raise _not_configured("credentials")
        return self._cfg.LIVEKIT_API_KEY, self._cfg.LIVEKIT_API_SECRET

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[api.LiveKitAPI]:
        if not self._cfg.LIVEKIT_URL:
            raise _not_configured("URL")
        api_key, api_secret = self._credentials()

        async with api.LiveKitAPI(
            self._cfg.LIVEKIT_URL, api_key=api_key, api_secret=api_secret
        ) as lkapi:
            yield lkapi

    # ==================== ROOMS ====================

    async def list_rooms(self, names: list[str] | None = None) -> list[api.Room]:
        async with self._client() as lkapi:
            response = await lkapi.room.list_rooms(api.ListRoomsRequest(names=names or []))
        return list(response.rooms)

    async def create_room(self, room_name: str, max_participants: int = 0) -> api.Room:
        """Create a room that closes after the configured idle timeout.

        Args:
            room_name: Unique room name, the stream's `room_name`
            max_participants: Participant cap, 0 for unlimited
        """
        request = api.CreateRoomRequest(
            name=room_name,
            empty_timeout=self._cfg.LIVEKIT_ROOM_EMPTY_TIMEOUT,
            max_participants=max_participants,
        )
        async with self._client() as lkapi:
            room = await lkapi.room.create_room(request)
        logger.info(f"Created LiveKit room {room.name} (sid={room.sid}, max={max_participants})")
        return room

    async def list_participants(self, room_name: str) -> list[api.ParticipantInfo]:
        async with self._client() as lkapi:
            response = await lkapi.room.list_participants(
                api.ListParticipantsRequest(room=room_name)
            )
        return list(response.participants)

    # ==================== CREDENTIALS ====================

    async def create_access_token(
        self,
        identity: str,
        room: str,
        name: str | None = None,
        can_publish: bool = True,
        can_subscribe: bool = True,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
    ) -> str:
        """Signed participant JWT for one room.

        Publishers may also send data messages; subscribe-only viewers may not.

        Raises:
            AppError: If the API key or secret is not configured
        """
        api_key, api_secret = self._credentials()

        grants = api.VideoGrants(
            room_join=True,
            room=room,
            can_publish=can_publish,
            can_subscribe=can_subscribe,
            can_publish_data=can_publish,
        )
        token = api.AccessToken(api_key, api_secret).with_identity(identity).with_ttl(ttl)
        if name:
            token = token.with_name(name)

        logger.debug(f"Issued room token identity={identity} room={room} publish={can_publish}")
        return token.with_grants(grants).to_jwt()

    # ==================== EGRESS ====================

    async def start_room_composite_egress(
        self,
        room_name: str,
        urls: list[str],
        layout: str = "speaker",
    ) -> Any:
        """Composite the room and push it to the RTMP `urls`.

        Returns:
            EgressInfo with .egress_id and .status
        """
        request = api.RoomCompositeEgressRequest(
            room_name=room_name,
            layout=layout,
            stream_outputs=[api.StreamOutput(protocol=api.StreamProtocol.RTMP, urls=urls)],
        )
        async with self._client() as lkapi:
            info = await lkapi.egress.start_room_composite_egress(request)
        logger.info(f"Egress {info.egress_id} started for room {room_name} (layout={layout})")
        return info

    async def stop_egress(self, egress_id: str) -> Any:
        async with self._client() as lkapi:
            return await lkapi.egress.stop_egress(api.StopEgressRequest(egress_id=egress_id))

    async def list_egress(
        self,
        room_name: str | None = None,
        egress_id: str | None = None,
        active: bool = False,
    ) -> list[Any]:
        """EgressInfo objects matching the filters; empty filters match everything."""
        request = api.ListEgressRequest(
            room_name=room_name or "",
            egress_id=egress_id or "",
            active=active,
        )
        async with self._client() as lkapi:
            response = await lkapi.egress.list_egress(request)
        return list(response.items)


livekit_service = LivekitService()
