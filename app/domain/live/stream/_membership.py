"""Host membership operations: admission, departure and invites."""

import secrets
from collections.abc import Awaitable, Callable
from datetime import timedelta

from loguru import logger

from app.domain.utils.idgen import new_host_id, new_invite_id
from app.schemas import HostRole, StreamStatus, StreamType
from app.schemas.schema_utils import utc_now
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode, not_found, unauthorized

from ._base import BaseService
from .stream_models import (
    HostInviteResponse,
    InviteCreatedResponse,
    InviteCreateParams,
    StreamHostResponse,
    StreamResponse,
)

DepartureHook = Callable[[str, str], Awaitable[StreamResponse | None]]


def _invite_invalid(reason: str) -> AppError:
    return AppError(
        AppErrorCode.E_INVITE_INVALID,
        f"Invite is not valid: {reason}",
        HttpStatusCode.BAD_REQUEST,
    )


class MembershipOperations(BaseService):
    """Admission control for host slots and the invites that grant them.

    Capacity and already-host checks are read-then-write. Two joins racing for
    the last slot can both pass the count check; the store's unique index on
    active (stream, user) rows still prevents duplicate membership.
    """

    def __init__(self, *args, on_departure: DepartureHook | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        # Set by the facade to the lifecycle's owner-departure rule
        self.on_departure = on_departure

    # ==================== ADMISSION ====================

    async def join(
        self,
        stream_id: str,
        user_id: str,
        token: str | None = None,
        caller_id: str | None = None,
    ) -> StreamHostResponse:
        """Admit `user_id` as an active host of the stream.

        Admission needs one of: a usable invite `token` for this stream, the
        user being the owner, or `caller_id` being the owner adding someone.

        Raises:
            AppError: E_NOT_FOUND, E_INVITE_INVALID, E_UNAUTHORIZED,
                E_UNSUPPORTED_STREAM_TYPE, E_ALREADY_HOST or E_CAPACITY_EXCEEDED
        """
        stream = await self._get_stream_or_raise(stream_id)
        if stream.status == StreamStatus.ENDED:
            raise not_found(f"Active stream {stream_id}")

        now = utc_now()
        invite: HostInviteResponse | None = None

        if token is not None:
            invite = await self.store.get_invite_by_token(token)
            if invite is None:
                raise _invite_invalid("unknown token")
            if invite.stream_id != stream_id:
                raise _invite_invalid("invite belongs to another stream")
            if not invite.is_active:
                raise _invite_invalid("invite was revoked")
            if invite.expires_at is not None and invite.expires_at <= now:
                raise _invite_invalid("invite expired")
            if not invite.is_usable(now):
                raise _invite_invalid("invite has no uses left")
        elif user_id != stream.owner_id and caller_id != stream.owner_id:
            raise unauthorized("Joining requires an invite or the stream owner's approval")

        is_owner = user_id == stream.owner_id
        if not is_owner and stream.stream_type not in StreamType.multi_host_types():
            raise AppError(
                AppErrorCode.E_UNSUPPORTED_STREAM_TYPE,
                f"Stream type {stream.stream_type} does not support additional hosts",
                HttpStatusCode.BAD_REQUEST,
            )

        if await self.store.get_active_host(stream_id, user_id) is not None:
            raise AppError(
                AppErrorCode.E_ALREADY_HOST,
                f"User {user_id} is already an active host of stream {stream_id}",
                HttpStatusCode.CONFLICT,
            )

        active_count = await self.store.count_active_hosts(stream_id)
        if active_count >= stream.max_hosts:
            raise AppError(
                AppErrorCode.E_CAPACITY_EXCEEDED,
                f"Stream {stream_id} is at capacity ({active_count}/{stream.max_hosts} hosts)",
                HttpStatusCode.CONFLICT,
            )

        host = StreamHostResponse(
            host_id=new_host_id(),
            stream_id=stream_id,
            user_id=user_id,
            role=HostRole.OWNER if is_owner else (invite.role if invite else HostRole.HOST),
            invite_id=invite.invite_id if invite else None,
            joined_at=now,
        )

        if invite is None:
            await self.store.insert_host(host)
        elif await self.store.admit_host_with_invite(host, invite.invite_id, now) is None:
            raise _invite_invalid("invite was used up or revoked concurrently")

        logger.info(
            f"User {user_id} joined stream {stream_id} as {host.role} "
            f"(invite={host.invite_id}, hosts={active_count + 1}/{stream.max_hosts})"
        )
        return host

    async def leave(self, stream_id: str, user_id: str) -> StreamHostResponse:
        """Close the caller's active host row and apply the owner-departure rule.

        Raises:
            AppError: E_NOT_FOUND if the stream is missing, E_NOT_A_HOST if the
                user holds no active host row
        """
        await self._get_stream_or_raise(stream_id)

        host = await self.store.get_active_host(stream_id, user_id)
        if host is None:
            raise AppError(
                AppErrorCode.E_NOT_A_HOST,
                f"User {user_id} is not an active host of stream {stream_id}",
                HttpStatusCode.NOT_FOUND,
            )

        left_at = utc_now()
        if not await self.store.mark_host_left(host.host_id, left_at):
            # A concurrent leave/remove closed it first
            logger.info(f"Host {host.host_id} already left stream {stream_id}")
        host = host.model_copy(update={"left_at": left_at})
        logger.info(f"User {user_id} left stream {stream_id}")

        if self.on_departure is not None:
            await self.on_departure(stream_id, user_id)

        return host

    async def remove_host(self, stream_id: str, host_id: str, caller_id: str) -> StreamHostResponse:
        """Owner removes a host; invites the host created for this stream stop working.

        Raises:
            AppError: E_UNAUTHORIZED, E_NOT_FOUND or E_INVALID_REQUEST (owner row)
        """
        await self._require_owner(stream_id, caller_id)

        host = await self.store.get_host(host_id)
        if host is None or host.stream_id != stream_id or not host.is_active:
            raise not_found(f"Host {host_id}")
        if host.role == HostRole.OWNER:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "The stream owner cannot be removed",
                HttpStatusCode.BAD_REQUEST,
            )

        left_at = utc_now()
        await self.store.mark_host_left(host_id, left_at)
        revoked = await self.store.deactivate_invites_by_creator(stream_id, host.user_id)
        logger.info(
            f"Host {host.user_id} removed from stream {stream_id} by owner, "
            f"{revoked} invite(s) deactivated"
        )
        return host.model_copy(update={"left_at": left_at})

    async def list_hosts(self, stream_id: str) -> list[StreamHostResponse]:
        await self._get_stream_or_raise(stream_id)
        return await self.store.list_active_hosts(stream_id)

    # ==================== INVITES ====================

    def build_invite_url(self, stream_id: str, token: str) -> str:
        base = self._cfg.FRONTEND_BASE_URL.rstrip("/")
        return f"{base}/stream/{stream_id}/join?token={token}"

    async def create_invite(
        self,
        stream_id: str,
        creator_id: str,
        params: InviteCreateParams,
    ) -> InviteCreatedResponse:
        """Create a host invite for a multi-host stream.

        Raises:
            AppError: E_UNAUTHORIZED (not owner), E_UNSUPPORTED_STREAM_TYPE,
                E_INVALID_REQUEST (owner role requested)
        """
        stream = await self._require_owner(stream_id, creator_id)

        if stream.stream_type not in StreamType.multi_host_types():
            raise AppError(
                AppErrorCode.E_UNSUPPORTED_STREAM_TYPE,
                f"Stream type {stream.stream_type} does not support host invites",
                HttpStatusCode.BAD_REQUEST,
            )
        if params.role == HostRole.OWNER:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "Invites cannot grant the owner role",
                HttpStatusCode.BAD_REQUEST,
            )

        expires_in_hours = params.expires_in_hours
        if expires_in_hours is None:
            expires_in_hours = self._cfg.INVITE_DEFAULT_EXPIRES_IN_HOURS

        now = utc_now()
        invite = HostInviteResponse(
            invite_id=new_invite_id(),
            stream_id=stream_id,
            created_by=creator_id,
            token=secrets.token_hex(32),
            role=params.role,
            max_uses=params.max_uses,
            expires_at=now + timedelta(hours=expires_in_hours) if expires_in_hours > 0 else None,
            created_at=now,
        )
        await self.store.create_invite(invite)

        logger.info(
            f"Invite {invite.invite_id} created for stream {stream_id} "
            f"(max_uses={invite.max_uses}, expires_at={invite.expires_at})"
        )
        return InviteCreatedResponse(
            invite=invite,
            invite_url=self.build_invite_url(stream_id, invite.token),
        )

    async def list_invites(self, stream_id: str, caller_id: str) -> list[HostInviteResponse]:
        """Active, unexpired invites of a stream, newest first. Owner or active host only."""
        await self._require_owner_or_host(stream_id, caller_id)
        return await self.store.list_valid_invites(stream_id, utc_now())

    async def revoke_invite(self, invite_id: str, caller_id: str) -> HostInviteResponse:
        """Deactivate an invite. Allowed for the stream owner and the invite creator."""
        invite = await self.store.get_invite(invite_id)
        if invite is None:
            raise not_found(f"Invite {invite_id}")

        stream = await self._get_stream_or_raise(invite.stream_id)
        if caller_id not in {stream.owner_id, invite.created_by}:
            raise unauthorized("Only the stream owner or the invite creator can revoke it")

        await self.store.deactivate_invite(invite_id)
        logger.info(f"Invite {invite_id} revoked by {caller_id}")
        return invite.model_copy(update={"is_active": False})
