"""Integration tests for BeanieStreamStore against a real MongoDB.

Run with: pytest integration_tests/services/test_stream_store_integration.py -v

Requires MONGO_TEST_URL pointing at a replica set (transactions are used).
A throwaway database is created per test and dropped afterwards.
"""

import asyncio
import os
from datetime import timedelta

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorClient
from ulid import ULID

from app.domain.live.stream.stream_models import (
    HostInviteResponse,
    StreamHostResponse,
    StreamResponse,
)
from app.schemas import HostRole, RecordingStatus, StreamStatus
from app.schemas.init import init_beanie_odm
from app.schemas.schema_utils import utc_now
from app.services.stream_store import BeanieStreamStore
from app.utils.app_errors import AppError, AppErrorCode


def _stream(stream_id: str = "st_int") -> StreamResponse:
    now = utc_now()
    return StreamResponse(
        stream_id=stream_id,
        owner_id="u.owner",
        title="Integration",
        created_at=now,
        updated_at=now,
    )


def _host(user_id: str, stream_id: str = "st_int", role: HostRole = HostRole.HOST):
    return StreamHostResponse(
        host_id=f"h_{ULID()}",
        stream_id=stream_id,
        user_id=user_id,
        role=role,
        joined_at=utc_now(),
    )


@pytest_asyncio.fixture
async def store():
    mongo_url = os.environ.get("MONGO_TEST_URL")
    if not mongo_url:
        pytest.skip("MONGO_TEST_URL environment variable required")

    client = AsyncIOMotorClient(mongo_url, tz_aware=True)
    database_name = f"livecast_test_{ULID()}".lower()
    await init_beanie_odm(client, database_name)
    try:
        yield BeanieStreamStore(client)
    finally:
        await client.drop_database(database_name)
        client.close()


@pytest.mark.integration
class TestBeanieStreamStore:
    """Conditional writes and uniqueness guarantees of the Mongo store."""

    async def test_create_with_owner_host(self, store: BeanieStreamStore):
        await store.create_stream(_stream(), owner_host=_host("u.owner", role=HostRole.OWNER))

        assert (await store.get_stream("st_int")).status == StreamStatus.CREATED
        hosts = await store.list_active_hosts("st_int")
        assert [h.user_id for h in hosts] == ["u.owner"]

    async def test_transition_single_winner(self, store: BeanieStreamStore):
        """Test concurrent CREATED -> LIVE transitions: exactly one write succeeds."""
        # Arrange
        await store.create_stream(_stream())

        # Act
        results = await asyncio.gather(
            *[
                store.transition_stream(
                    "st_int", StreamStatus.CREATED, {"status": StreamStatus.LIVE}
                )
                for _ in range(5)
            ]
        )

        # Assert
        assert sum(r is not None for r in results) == 1
        assert (await store.get_stream("st_int")).status == StreamStatus.LIVE

    async def test_update_recording_respects_sources(self, store: BeanieStreamStore):
        await store.create_stream(_stream())
        ready = await store.update_recording(
            "st_int",
            [RecordingStatus.NONE],
            {"recording_status": RecordingStatus.READY, "recording_asset_id": "asset_1"},
        )

        stale = await store.update_recording(
            "st_int",
            [RecordingStatus.NONE, RecordingStatus.UPLOADING],
            {"recording_status": RecordingStatus.PROCESSING},
        )

        assert ready.recording_status == RecordingStatus.READY
        assert stale is None
        found = await store.find_stream_by_recording_ref("asset_1")
        assert found.recording_status == RecordingStatus.READY

    async def test_one_active_row_per_user(self, store: BeanieStreamStore):
        await store.create_stream(_stream())
        first = await store.insert_host(_host("u.guest"))

        with pytest.raises(AppError) as exc_info:
            await store.insert_host(_host("u.guest"))
        assert exc_info.value.errcode == AppErrorCode.E_ALREADY_HOST

        assert await store.mark_host_left(first.host_id, utc_now()) is True
        await store.insert_host(_host("u.guest"))
        assert await store.count_active_hosts("st_int") == 1

    async def test_single_use_invite_claimed_once(self, store: BeanieStreamStore):
        """Test two admissions racing for a single-use invite: one host row, used_count 1."""
        # Arrange
        await store.create_stream(_stream())
        now = utc_now()
        invite = HostInviteResponse(
            invite_id="inv_1",
            stream_id="st_int",
            created_by="u.owner",
            token="tok_1",
            max_uses=1,
            expires_at=now + timedelta(hours=1),
            created_at=now,
        )
        await store.create_invite(invite)

        # Act
        results = await asyncio.gather(
            store.admit_host_with_invite(_host("u.a"), "inv_1", now),
            store.admit_host_with_invite(_host("u.b"), "inv_1", now),
            return_exceptions=True,
        )

        # Assert
        admitted = [r for r in results if isinstance(r, StreamHostResponse)]
        assert len(admitted) == 1
        assert (await store.get_invite("inv_1")).used_count == 1
        assert await store.count_active_hosts("st_int") == 1

    async def test_list_valid_invites(self, store: BeanieStreamStore):
        await store.create_stream(_stream())
        now = utc_now()
        for invite_id, expires_at in [
            ("inv_open", None),
            ("inv_future", now + timedelta(hours=1)),
            ("inv_past", now - timedelta(hours=1)),
        ]:
            await store.create_invite(
                HostInviteResponse(
                    invite_id=invite_id,
                    stream_id="st_int",
                    created_by="u.owner",
                    token=f"tok_{invite_id}",
                    expires_at=expires_at,
                    created_at=now,
                )
            )
        await store.deactivate_invite("inv_future")

        valid = await store.list_valid_invites("st_int", utc_now())

        assert [i.invite_id for i in valid] == ["inv_open"]
