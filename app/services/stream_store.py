"""Entity store adapter for streams, hosts and invites.

The domain layer talks to persistence only through `StreamStore`. Every write
that guards a state change is conditional: the filter carries the expected
source state, and a `None` result means another writer got there first.

Usage:
    store = BeanieStreamStore(get_mongo_client())
    stream = await store.transition_stream(
        stream_id, expected=StreamStatus.CREATED, updates={"status": StreamStatus.LIVE}
    )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from beanie import UpdateResponse
from beanie.operators import In, Inc, Or, Set
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError

from app.domain.live.stream.stream_models import (
    HostInviteResponse,
    StreamHostResponse,
    StreamResponse,
)
from app.schemas import HostInvite, RecordingStatus, Stream, StreamHost, StreamStatus
from app.schemas.schema_utils import utc_now
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


def already_host_error(stream_id: str, user_id: str) -> AppError:
    return AppError(
        AppErrorCode.E_ALREADY_HOST,
        f"User {user_id} is already an active host of stream {stream_id}",
        HttpStatusCode.CONFLICT,
    )


class StreamStore(ABC):
    """Persistence operations required by the stream core."""

    # ==================== STREAMS ====================

    @abstractmethod
    async def create_stream(
        self, stream: StreamResponse, owner_host: StreamHostResponse | None = None
    ) -> StreamResponse:
        """Insert a stream, and its owner host row in the same unit of work."""

    @abstractmethod
    async def get_stream(self, stream_id: str) -> StreamResponse | None: ...

    @abstractmethod
    async def update_stream(
        self, stream_id: str, updates: Mapping[str, Any]
    ) -> StreamResponse | None:
        """Unconditional partial update of non-status fields."""

    @abstractmethod
    async def transition_stream(
        self, stream_id: str, expected: StreamStatus, updates: Mapping[str, Any]
    ) -> StreamResponse | None:
        """Apply `updates` only while `status == expected`."""

    @abstractmethod
    async def update_recording(
        self,
        stream_id: str,
        allowed_from: Iterable[RecordingStatus],
        updates: Mapping[str, Any],
    ) -> StreamResponse | None:
        """Apply `updates` only while `recording_status` is one of `allowed_from`."""

    @abstractmethod
    async def find_stream_by_recording_ref(self, ref: str) -> StreamResponse | None:
        """Resolve a stream by upload id or asset id recorded on it."""

    @abstractmethod
    async def find_stream_by_live_stream_id(self, live_stream_id: str) -> StreamResponse | None: ...

    # ==================== HOSTS ====================

    @abstractmethod
    async def get_host(self, host_id: str) -> StreamHostResponse | None: ...

    @abstractmethod
    async def get_active_host(self, stream_id: str, user_id: str) -> StreamHostResponse | None: ...

    @abstractmethod
    async def count_active_hosts(self, stream_id: str) -> int: ...

    @abstractmethod
    async def list_active_hosts(self, stream_id: str) -> list[StreamHostResponse]:
        """Active hosts ordered by `joined_at`."""

    @abstractmethod
    async def insert_host(self, host: StreamHostResponse) -> StreamHostResponse:
        """Insert an active host row. Raises E_ALREADY_HOST on a duplicate active row."""

    @abstractmethod
    async def mark_host_left(self, host_id: str, left_at: datetime) -> bool:
        """Close an active host row. False when it was already closed."""

    @abstractmethod
    async def admit_host_with_invite(
        self, host: StreamHostResponse, invite_id: str, now: datetime
    ) -> StreamHostResponse | None:
        """Claim one invite use and insert the host row atomically.

        Returns None, writing nothing, when the invite can no longer be claimed.
        """

    # ==================== INVITES ====================

    @abstractmethod
    async def create_invite(self, invite: HostInviteResponse) -> HostInviteResponse: ...

    @abstractmethod
    async def get_invite(self, invite_id: str) -> HostInviteResponse | None: ...

    @abstractmethod
    async def get_invite_by_token(self, token: str) -> HostInviteResponse | None: ...

    @abstractmethod
    async def list_valid_invites(self, stream_id: str, now: datetime) -> list[HostInviteResponse]:
        """Active, unexpired invites, newest first."""

    @abstractmethod
    async def deactivate_invite(self, invite_id: str) -> bool: ...

    @abstractmethod
    async def deactivate_invites_by_creator(self, stream_id: str, created_by: str) -> int: ...


def _encode(updates: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v.value if isinstance(v, Enum) else v for k, v in updates.items()}


def _to_stream(doc: Stream | None) -> StreamResponse | None:
    if doc is None:
        return None
    return StreamResponse(**doc.model_dump(exclude={"id"}))


def _to_host(doc: StreamHost | None) -> StreamHostResponse | None:
    if doc is None:
        return None
    return StreamHostResponse(**doc.model_dump(exclude={"id", "active"}))


def _to_invite(doc: HostInvite | None) -> HostInviteResponse | None:
    if doc is None:
        return None
    return HostInviteResponse(**doc.model_dump(exclude={"id"}))


def _host_document(host: StreamHostResponse) -> StreamHost:
    return StreamHost(**host.model_dump(), active=host.left_at is None)


class BeanieStreamStore(StreamStore):
    """MongoDB implementation backed by Beanie documents.

    Multi-document writes run in a transaction, so the database must be a
    replica set (a single-node replica set is enough for development).
    """

    def __init__(self, client: AsyncIOMotorClient):
        self._mongo_client = client

    def _client(self) -> AsyncIOMotorClient:
        return self._mongo_client

    # ==================== STREAMS ====================

    async def create_stream(
        self, stream: StreamResponse, owner_host: StreamHostResponse | None = None
    ) -> StreamResponse:
        doc = Stream(**stream.model_dump())
        if owner_host is None:
            await doc.insert()
        else:
            async with await self._client().start_session() as session:
                async with session.start_transaction():
                    await doc.insert(session=session)
                    await _host_document(owner_host).insert(session=session)

        logger.debug(f"Stream {stream.stream_id} inserted (owner_host={owner_host is not None})")
        return stream

    async def get_stream(self, stream_id: str) -> StreamResponse | None:
        return _to_stream(await Stream.find_one(Stream.stream_id == stream_id))

    async def update_stream(
        self, stream_id: str, updates: Mapping[str, Any]
    ) -> StreamResponse | None:
        fields = _encode(updates) | {"updated_at": utc_now()}
        doc = await Stream.find_one(Stream.stream_id == stream_id).update(
            Set(fields), response_type=UpdateResponse.NEW_DOCUMENT
        )
        return _to_stream(doc)  # type: ignore[arg-type]

    async def transition_stream(
        self, stream_id: str, expected: StreamStatus, updates: Mapping[str, Any]
    ) -> StreamResponse | None:
        fields = _encode(updates) | {"updated_at": utc_now()}
        doc = await Stream.find_one(
            Stream.stream_id == stream_id,
            Stream.status == expected.value,
        ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        return _to_stream(doc)  # type: ignore[arg-type]

    async def update_recording(
        self,
        stream_id: str,
        allowed_from: Iterable[RecordingStatus],
        updates: Mapping[str, Any],
    ) -> StreamResponse | None:
        fields = _encode(updates) | {"updated_at": utc_now()}
        doc = await Stream.find_one(
            Stream.stream_id == stream_id,
            In(Stream.recording_status, [s.value for s in allowed_from]),
        ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        return _to_stream(doc)  # type: ignore[arg-type]

    async def find_stream_by_recording_ref(self, ref: str) -> StreamResponse | None:
        doc = await Stream.find_one(
            Or(Stream.recording_id == ref, Stream.recording_asset_id == ref)
        )
        return _to_stream(doc)

    async def find_stream_by_live_stream_id(self, live_stream_id: str) -> StreamResponse | None:
        return _to_stream(await Stream.find_one(Stream.mux_live_stream_id == live_stream_id))

    # ==================== HOSTS ====================

    async def get_host(self, host_id: str) -> StreamHostResponse | None:
        return _to_host(await StreamHost.find_one(StreamHost.host_id == host_id))

    async def get_active_host(self, stream_id: str, user_id: str) -> StreamHostResponse | None:
        doc = await StreamHost.find_one(
            StreamHost.stream_id == stream_id,
            StreamHost.user_id == user_id,
            StreamHost.active == True,  # noqa: E712
        )
        return _to_host(doc)

    async def count_active_hosts(self, stream_id: str) -> int:
        return await StreamHost.find(
            StreamHost.stream_id == stream_id,
            StreamHost.active == True,  # noqa: E712
        ).count()

    async def list_active_hosts(self, stream_id: str) -> list[StreamHostResponse]:
        docs = (
            await StreamHost.find(
                StreamHost.stream_id == stream_id,
                StreamHost.active == True,  # noqa: E712
            )
            .sort(+StreamHost.joined_at)
            .to_list()
        )
        return [_to_host(doc) for doc in docs]  # type: ignore[misc]

    async def insert_host(self, host: StreamHostResponse) -> StreamHostResponse:
        try:
            await _host_document(host).insert()
        except DuplicateKeyError as exc:
            raise already_host_error(host.stream_id, host.user_id) from exc
        return host

    async def mark_host_left(self, host_id: str, left_at: datetime) -> bool:
        result = await StreamHost.find_one(
            StreamHost.host_id == host_id,
            StreamHost.active == True,  # noqa: E712
        ).update(Set({StreamHost.left_at: left_at, StreamHost.active: False}))
        return bool(result and result.modified_count)

    async def admit_host_with_invite(
        self, host: StreamHostResponse, invite_id: str, now: datetime
    ) -> StreamHostResponse | None:
        async with await self._client().start_session() as session:
            async with session.start_transaction():
                claimed = await HostInvite.find_one(
                    HostInvite.invite_id == invite_id,
                    HostInvite.is_active == True,  # noqa: E712
                    {"$expr": {"$lt": ["$used_count", "$max_uses"]}},
                    Or(HostInvite.expires_at == None, HostInvite.expires_at > now),  # noqa: E711
                    session=session,
                ).update(
                    Inc({HostInvite.used_count: 1}),
                    session=session,
                    response_type=UpdateResponse.NEW_DOCUMENT,
                )
                if claimed is None:
                    logger.info(f"Invite {invite_id} could not be claimed for {host.user_id}")
                    return None

                try:
                    await _host_document(host).insert(session=session)
                except DuplicateKeyError as exc:
                    raise already_host_error(host.stream_id, host.user_id) from exc

        return host

    # ==================== INVITES ====================

    async def create_invite(self, invite: HostInviteResponse) -> HostInviteResponse:
        await HostInvite(**invite.model_dump()).insert()
        return invite

    async def get_invite(self, invite_id: str) -> HostInviteResponse | None:
        return _to_invite(await HostInvite.find_one(HostInvite.invite_id == invite_id))

    async def get_invite_by_token(self, token: str) -> HostInviteResponse | None:
        return _to_invite(await HostInvite.find_one(HostInvite.token == token))

    async def list_valid_invites(self, stream_id: str, now: datetime) -> list[HostInviteResponse]:
        docs = (
            await HostInvite.find(
                HostInvite.stream_id == stream_id,
                HostInvite.is_active == True,  # noqa: E712
                Or(HostInvite.expires_at == None, HostInvite.expires_at > now),  # noqa: E711
            )
            .sort(-HostInvite.created_at)
            .to_list()
        )
        return [_to_invite(doc) for doc in docs]  # type: ignore[misc]

    async def deactivate_invite(self, invite_id: str) -> bool:
        result = await HostInvite.find_one(HostInvite.invite_id == invite_id).update(
            Set({HostInvite.is_active: False})
        )
        return bool(result and result.matched_count)

    async def deactivate_invites_by_creator(self, stream_id: str, created_by: str) -> int:
        result = await HostInvite.find(
            HostInvite.stream_id == stream_id,
            HostInvite.created_by == created_by,
            HostInvite.is_active == True,  # noqa: E712
        ).update(Set({HostInvite.is_active: False}))
        return result.modified_count if result else 0
