"""Integration tests for Mux service with real Mux API.

These tests are excluded from normal unit tests.
Run with: pytest integration_tests/services/test_mux_integration.py -v

Requires MUX_TOKEN_ID and MUX_TOKEN_SECRET environment variables.
"""

import os
import re

import mux_python
import pytest

from app.services.integrations.mux_service import MuxService


@pytest.mark.integration
class TestMuxServiceIntegration:
    """Integration tests for MuxService with real Mux API."""

    @pytest.fixture
    def mux_service(self) -> MuxService:
        """Create MuxService with real credentials.

        Raises:
            pytest.skip: If credentials are not provided via environment variables.
        """
        if not os.environ.get("MUX_TOKEN_ID") or not os.environ.get("MUX_TOKEN_SECRET"):
            pytest.skip("MUX_TOKEN_ID and MUX_TOKEN_SECRET environment variables required")
        return MuxService()

    async def test_create_live_stream(self, mux_service: MuxService) -> None:
        """Test live stream creation returns an ingest key and a public playback id."""
        live_stream = await mux_service.create_live_stream(passthrough="st_integration")

        try:
            assert live_stream.id
            assert live_stream.stream_key
            assert live_stream.playback_ids
            assert re.match(r"^rtmps?://", mux_service.rtmp_url(live_stream.stream_key))
            assert mux_service.rtmp_url(live_stream.stream_key).endswith(
                f"/app/{live_stream.stream_key}"
            )
        finally:
            live_api = mux_python.LiveStreamsApi(mux_service._get_api_client())
            live_api.delete_live_stream(live_stream.id)

    async def test_direct_upload_round_trip(self, mux_service: MuxService) -> None:
        """Test a created direct upload can be fetched back while waiting for a file."""
        upload = await mux_service.create_direct_upload(passthrough="st_integration")

        try:
            assert upload.url
            fetched = await mux_service.get_direct_upload(upload.id)
            assert fetched.id == upload.id
            assert fetched.status == "waiting"
            assert fetched.asset_id is None
        finally:
            uploads_api = mux_python.DirectUploadsApi(mux_service._get_api_client())
            uploads_api.cancel_direct_upload(upload.id)
