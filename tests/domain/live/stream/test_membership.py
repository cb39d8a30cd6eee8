"""Tests for host membership: admission, departure and invites."""

import asyncio
from datetime import timedelta

import pytest

from app.domain.live.stream.stream_models import InviteCreateParams, StreamCreateParams
from app.schemas import HostRole, StreamStatus, StreamType
from app.schemas.schema_utils import utc_now
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

OWNER = "u.owner"


async def _create(service, stream_type=StreamType.LIVEKIT_ROOM, **kwargs):
    params = StreamCreateParams(owner_id=OWNER, title="Panel", stream_type=stream_type, **kwargs)
    return await service.create_stream(params)


async def _invite(service, stream_id, **kwargs):
    created = await service.create_invite(stream_id, OWNER, InviteCreateParams(**kwargs))
    return created.invite


class TestJoin:
    """Tests for StreamService.join method."""

    async def test_join_with_invite(self, service, store):
        """Test a valid invite admits the user and consumes one use."""
        # Arrange
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id, max_uses=2)

        # Act
        host = await service.join(stream.stream_id, "u.guest", token=invite.token)

        # Assert
        assert host.user_id == "u.guest"
        assert host.role == HostRole.HOST
        assert host.invite_id == invite.invite_id
        assert store.invites[invite.invite_id].used_count == 1
        assert await store.count_active_hosts(stream.stream_id) == 2

    async def test_owner_adds_host_directly(self, service):
        """Test the owner can admit a user without an invite."""
        stream = await _create(service)

        host = await service.join(stream.stream_id, "u.cohost", caller_id=OWNER)

        assert host.user_id == "u.cohost"
        assert host.invite_id is None

    async def test_join_without_invite_unauthorized(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest")

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHORIZED
        assert exc_info.value.status_code == HttpStatusCode.FORBIDDEN

    async def test_owner_rejoin_while_active_is_already_host(self, service):
        """Test the owner row created with the stream blocks a duplicate."""
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_ALREADY_HOST
        assert exc_info.value.status_code == HttpStatusCode.CONFLICT

    async def test_owner_rejoins_after_leaving(self, service):
        stream = await _create(service)
        await service.leave(stream.stream_id, OWNER)

        host = await service.join(stream.stream_id, OWNER)

        assert host.role == HostRole.OWNER

    async def test_join_at_capacity(self, service):
        """Test CAPACITY_EXCEEDED once active hosts reach max_hosts."""
        stream = await _create(service, max_hosts=2)
        await service.join(stream.stream_id, "u.one", caller_id=OWNER)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.two", caller_id=OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_CAPACITY_EXCEEDED

    async def test_join_after_slot_frees(self, service):
        """Test a departed host's slot can be reused."""
        stream = await _create(service, max_hosts=2)
        await service.join(stream.stream_id, "u.one", caller_id=OWNER)
        await service.leave(stream.stream_id, "u.one")

        host = await service.join(stream.stream_id, "u.two", caller_id=OWNER)

        assert host.user_id == "u.two"

    async def test_join_already_host(self, service):
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id, max_uses=5)
        await service.join(stream.stream_id, "u.guest", token=invite.token)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_ALREADY_HOST

    async def test_join_browser_stream_unsupported(self, service):
        """Test single-host stream types reject additional hosts."""
        stream = await _create(service, StreamType.BROWSER)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", caller_id=OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_UNSUPPORTED_STREAM_TYPE

    async def test_join_ended_stream_not_found(self, service):
        stream = await _create(service)
        await service.start_stream(stream.stream_id, OWNER)
        await service.end_stream(stream.stream_id, OWNER)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", caller_id=OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND

    async def test_join_missing_stream(self, service):
        with pytest.raises(AppError) as exc_info:
            await service.join("st_missing", OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND


class TestInviteValidation:
    """Tests for the invite checks made on join."""

    async def test_unknown_token(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", token="nope")

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID

    async def test_token_for_other_stream(self, service):
        stream_a = await _create(service)
        stream_b = await _create(service)
        invite = await _invite(service, stream_a.stream_id)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream_b.stream_id, "u.guest", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID

    async def test_expired_invite(self, service, store):
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id)
        store.invites[invite.invite_id] = invite.model_copy(
            update={"expires_at": utc_now() - timedelta(minutes=1)}
        )

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID

    async def test_revoked_invite(self, service):
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id)
        await service.revoke_invite(invite.invite_id, OWNER)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID

    async def test_exhausted_invite(self, service):
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id, max_uses=1)
        await service.join(stream.stream_id, "u.first", token=invite.token)

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.second", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID

    async def test_failed_claim_writes_nothing(self, service, store):
        """Test an invite that cannot be claimed leaves no host row and no used count."""
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id, max_uses=1)

        # Invite used up between validation and claim
        original = store.get_invite_by_token

        async def stale_lookup(token):
            found = await original(token)
            store.invites[invite.invite_id] = found.model_copy(update={"used_count": 1})
            return found

        store.get_invite_by_token = stale_lookup

        with pytest.raises(AppError) as exc_info:
            await service.join(stream.stream_id, "u.guest", token=invite.token)

        assert exc_info.value.errcode == AppErrorCode.E_INVITE_INVALID
        assert await store.get_active_host(stream.stream_id, "u.guest") is None
        assert store.invites[invite.invite_id].used_count == 1


class TestConcurrentJoins:
    """Stress tests for admission with joins interleaving at every store read."""

    async def test_concurrent_joins_at_capacity(self, interleaving_service, interleaving_store):
        """Test N concurrent joins at capacity N over-admit by at most one."""
        # Arrange
        capacity = 4
        stream = await _create(interleaving_service, max_hosts=capacity)

        # Act
        results = await asyncio.gather(
            *(
                interleaving_service.join(stream.stream_id, f"u.guest{i}", caller_id=OWNER)
                for i in range(capacity)
            ),
            return_exceptions=True,
        )

        # Assert
        active = await interleaving_store.count_active_hosts(stream.stream_id)
        # Every join read the host count before any of them inserted
        assert active == capacity + 1
        assert not [r for r in results if isinstance(r, Exception)]

    async def test_join_after_race_sees_capacity(self, interleaving_service, interleaving_store):
        """Test a join after an over-admitting race is rejected with CAPACITY_EXCEEDED."""
        # Arrange
        capacity = 2
        stream = await _create(interleaving_service, max_hosts=capacity)
        await asyncio.gather(
            *(
                interleaving_service.join(stream.stream_id, f"u.guest{i}", caller_id=OWNER)
                for i in range(capacity)
            )
        )

        # Act
        with pytest.raises(AppError) as exc_info:
            await interleaving_service.join(stream.stream_id, "u.late", caller_id=OWNER)

        # Assert
        assert exc_info.value.errcode == AppErrorCode.E_CAPACITY_EXCEEDED
        assert await interleaving_store.count_active_hosts(stream.stream_id) <= capacity + 1

    async def test_single_use_invite_race(self, interleaving_service, interleaving_store):
        """Test two users racing for a single-use invite: exactly one is admitted."""
        # Arrange
        stream = await _create(interleaving_service)
        invite = await _invite(interleaving_service, stream.stream_id, max_uses=1)

        # Act
        results = await asyncio.gather(
            interleaving_service.join(stream.stream_id, "u.a", token=invite.token),
            interleaving_service.join(stream.stream_id, "u.b", token=invite.token),
            return_exceptions=True,
        )

        # Assert
        admitted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, AppError)]
        assert len(admitted) == 1
        assert len(rejected) == 1
        assert rejected[0].errcode == AppErrorCode.E_INVITE_INVALID
        assert interleaving_store.invites[invite.invite_id].used_count == 1

    async def test_same_user_concurrent_joins(self, interleaving_service, interleaving_store):
        """Test duplicate joins by one user leave a single active row."""
        # Arrange
        stream = await _create(interleaving_service)

        # Act
        results = await asyncio.gather(
            *(
                interleaving_service.join(stream.stream_id, "u.guest", caller_id=OWNER)
                for _ in range(3)
            ),
            return_exceptions=True,
        )

        # Assert
        hosts = [
            h
            for h in await interleaving_store.list_active_hosts(stream.stream_id)
            if h.user_id == "u.guest"
        ]
        assert len(hosts) == 1
        rejected = [r for r in results if isinstance(r, AppError)]
        assert len(rejected) == 2
        assert all(r.errcode == AppErrorCode.E_ALREADY_HOST for r in rejected)


class TestLeave:
    """Tests for StreamService.leave and the owner-departure rule."""

    async def test_host_leave(self, service, store):
        stream = await _create(service)
        await service.join(stream.stream_id, "u.guest", caller_id=OWNER)

        host = await service.leave(stream.stream_id, "u.guest")

        assert host.left_at is not None
        assert await store.get_active_host(stream.stream_id, "u.guest") is None

    async def test_leave_not_a_host(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.leave(stream.stream_id, "u.stranger")

        assert exc_info.value.errcode == AppErrorCode.E_NOT_A_HOST
        assert exc_info.value.status_code == HttpStatusCode.NOT_FOUND

    async def test_owner_leaving_empty_live_stream_ends_it(self, service):
        """Test the owner leaving with no other hosts ends a LIVE stream."""
        stream = await _create(service)
        await service.start_stream(stream.stream_id, OWNER)

        await service.leave(stream.stream_id, OWNER)

        final = await service.get_stream(stream.stream_id)
        assert final.status == StreamStatus.ENDED
        assert final.duration is not None

    async def test_owner_leaving_with_hosts_keeps_stream_live(self, service):
        stream = await _create(service)
        await service.join(stream.stream_id, "u.guest", caller_id=OWNER)
        await service.start_stream(stream.stream_id, OWNER)

        await service.leave(stream.stream_id, OWNER)

        final = await service.get_stream(stream.stream_id)
        assert final.status == StreamStatus.LIVE

    async def test_last_guest_leaving_does_not_end(self, service):
        """Test only the owner's departure can end the stream."""
        stream = await _create(service)
        await service.join(stream.stream_id, "u.guest", caller_id=OWNER)
        await service.start_stream(stream.stream_id, OWNER)
        await service.leave(stream.stream_id, OWNER)

        await service.leave(stream.stream_id, "u.guest")

        final = await service.get_stream(stream.stream_id)
        assert final.status == StreamStatus.LIVE

    async def test_owner_leaving_created_stream(self, service):
        stream = await _create(service)

        await service.leave(stream.stream_id, OWNER)

        final = await service.get_stream(stream.stream_id)
        assert final.status == StreamStatus.CREATED


class TestRemoveHost:
    """Tests for StreamService.remove_host method."""

    async def test_owner_removes_host_and_their_invites(self, service, store):
        stream = await _create(service)
        host = await service.join(stream.stream_id, "u.guest", caller_id=OWNER)
        store.invites["iv_guest"] = (await _invite(service, stream.stream_id)).model_copy(
            update={"invite_id": "iv_guest", "created_by": "u.guest", "token": "guest-token"}
        )

        removed = await service.remove_host(stream.stream_id, host.host_id, OWNER)

        assert removed.left_at is not None
        assert await store.get_active_host(stream.stream_id, "u.guest") is None
        assert store.invites["iv_guest"].is_active is False

    async def test_non_owner_cannot_remove(self, service):
        stream = await _create(service)
        host = await service.join(stream.stream_id, "u.guest", caller_id=OWNER)

        with pytest.raises(AppError) as exc_info:
            await service.remove_host(stream.stream_id, host.host_id, "u.guest")

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHORIZED

    async def test_owner_row_cannot_be_removed(self, service, store):
        stream = await _create(service)
        owner_host = await store.get_active_host(stream.stream_id, OWNER)

        with pytest.raises(AppError) as exc_info:
            await service.remove_host(stream.stream_id, owner_host.host_id, OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_INVALID_REQUEST

    async def test_remove_unknown_host(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.remove_host(stream.stream_id, "ho_missing", OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND


class TestInvites:
    """Tests for invite creation, listing and revocation."""

    async def test_create_invite_defaults(self, service):
        """Test a default invite is single use, expires in 24h and carries a join URL."""
        stream = await _create(service)

        created = await service.create_invite(stream.stream_id, OWNER, InviteCreateParams())

        invite = created.invite
        assert invite.max_uses == 1
        assert invite.used_count == 0
        assert len(invite.token) == 64
        expected_expiry = invite.created_at + timedelta(hours=24)
        assert abs((invite.expires_at - expected_expiry).total_seconds()) < 1
        assert created.invite_url == (
            f"https://live.example.com/stream/{stream.stream_id}/join?token={invite.token}"
        )

    async def test_create_invite_without_expiry(self, service):
        stream = await _create(service)

        invite = await _invite(service, stream.stream_id, expires_in_hours=0)

        assert invite.expires_at is None

    async def test_create_invite_owner_role_rejected(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await _invite(service, stream.stream_id, role=HostRole.OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_INVALID_REQUEST

    async def test_create_invite_requires_owner(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.create_invite(stream.stream_id, "u.guest", InviteCreateParams())

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHORIZED

    async def test_create_invite_single_host_type(self, service):
        stream = await _create(service, StreamType.RTMP)

        with pytest.raises(AppError) as exc_info:
            await _invite(service, stream.stream_id)

        assert exc_info.value.errcode == AppErrorCode.E_UNSUPPORTED_STREAM_TYPE

    async def test_list_invites_excludes_revoked_and_expired(self, service, store):
        """Test only active, unexpired invites are listed, newest first."""
        stream = await _create(service)
        kept_old = await _invite(service, stream.stream_id)
        revoked = await _invite(service, stream.stream_id)
        expired = await _invite(service, stream.stream_id)
        kept_new = await _invite(service, stream.stream_id)
        await service.revoke_invite(revoked.invite_id, OWNER)
        store.invites[expired.invite_id] = expired.model_copy(
            update={"expires_at": utc_now() - timedelta(seconds=1)}
        )
        store.invites[kept_new.invite_id] = kept_new.model_copy(
            update={"created_at": kept_old.created_at + timedelta(seconds=5)}
        )

        invites = await service.list_invites(stream.stream_id, OWNER)

        assert [i.invite_id for i in invites] == [kept_new.invite_id, kept_old.invite_id]

    async def test_list_invites_requires_host(self, service):
        stream = await _create(service)

        with pytest.raises(AppError) as exc_info:
            await service.list_invites(stream.stream_id, "u.viewer")

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHORIZED

    async def test_revoke_by_stranger(self, service):
        stream = await _create(service)
        invite = await _invite(service, stream.stream_id)

        with pytest.raises(AppError) as exc_info:
            await service.revoke_invite(invite.invite_id, "u.stranger")

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHORIZED

    async def test_revoke_unknown_invite(self, service):
        with pytest.raises(AppError) as exc_info:
            await service.revoke_invite("iv_missing", OWNER)

        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND
