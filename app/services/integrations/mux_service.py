"""Mux helper service.

This module provides a thin wrapper around the `mux-python` package for live
stream ingest and recording ingestion (direct uploads and assets).

Based on the official Mux Python SDK:
https://github.com/muxinc/mux-python

The SDK is synchronous; every call is pushed to a worker thread so the event
loop is never blocked.

Usage:
    from app.services.integrations.mux_service import mux_service

    upload = await mux_service.create_direct_upload(passthrough=stream_id)
    await mux_service.upload_file(upload.url, data, content_type="video/webm")
    upload = await mux_service.get_direct_upload(upload.id)
"""

from __future__ import annotations

import asyncio

import httpx
import mux_python
from loguru import logger
from pydantic import BaseModel, Field

from app.app_config import get_app_environ_config
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class MuxPlaybackId(BaseModel):
    """Mux playback ID model."""

    id: str
    policy: str


class MuxLiveStream(BaseModel):
    """Mux live stream data model."""

    id: str
    stream_key: str
    status: str | None = None
    playback_ids: list[MuxPlaybackId] = Field(default_factory=list)
    active_asset_id: str | None = None
    recent_asset_ids: list[str] = Field(default_factory=list)


class MuxUpload(BaseModel):
    """Mux direct upload data model.

    `status` is one of waiting, asset_created, errored, cancelled, timed_out.
    """

    id: str
    url: str | None = None
    status: str
    asset_id: str | None = None
    error: str | None = None


class MuxAsset(BaseModel):
    """Mux asset data model. `status` is one of preparing, ready, errored."""

    id: str
    status: str
    playback_ids: list[MuxPlaybackId] = Field(default_factory=list)
    duration: float | None = None
    errors: list[str] = Field(default_factory=list)


def _playback_ids(raw: list | None) -> list[MuxPlaybackId]:
    return [
        MuxPlaybackId(id=pb.id, policy=str(pb.policy))  # type: ignore[attr-defined]
        for pb in (raw or [])
    ]


class MuxService:
    """Service wrapper for Mux Video API (mux-python package)."""

    def __init__(self) -> None:
        self._cfg = get_app_environ_config()
        self._api_client: mux_python.ApiClient | None = None
        logger.info("MuxService initialized")

    def _get_api_client(self) -> mux_python.ApiClient:
        """Get or create the Mux API client with credentials.

        Raises:
            AppError: If MUX_TOKEN_ID or MUX_TOKEN_SECRET is not configured
        """
        if self._api_client is None:
            token_id = self._cfg.MUX_TOKEN_ID
            token_secret = self._cfg.MUX_TOKEN_SECRET

            if not token_id or not token_secret:
                logger.error("MUX_TOKEN_ID or MUX_TOKEN_SECRET not configured")
                raise AppError(
                    errcode=AppErrorCode.E_INTERNAL_ERROR,
                    errmesg="Media processing credentials must be configured.",
                    status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
                )

            configuration = mux_python.Configuration()
            configuration.username = token_id
            configuration.password = token_secret
            self._api_client = mux_python.ApiClient(configuration)
            logger.info("Mux API client created")

        return self._api_client

    # ==================== LIVE STREAMS ====================

    def _create_live_stream(self, passthrough: str | None) -> MuxLiveStream:
        live_api = mux_python.LiveStreamsApi(self._get_api_client())
        request = mux_python.CreateLiveStreamRequest(
            playback_policy=["public"],
            new_asset_settings=mux_python.CreateAssetRequest(
                playback_policy=["public"]
            ),
            passthrough=passthrough,
        )
        mux_data = live_api.create_live_stream(request).data  # type: ignore[attr-defined]
        return MuxLiveStream(
            id=mux_data.id,
            stream_key=mux_data.stream_key,
            status=mux_data.status,
            playback_ids=_playback_ids(mux_data.playback_ids),
            active_asset_id=mux_data.active_asset_id,
        )

    async def create_live_stream(self, passthrough: str | None = None) -> MuxLiveStream:
        """Create a public live stream that records to a new asset.

        Args:
            passthrough: Arbitrary metadata echoed back in webhooks (our stream_id)

        Returns:
            MuxLiveStream with id, stream_key and playback_ids
        """
        logger.info(f"Creating Mux live stream passthrough={passthrough}")
        live_stream = await asyncio.to_thread(self._create_live_stream, passthrough)
        logger.info(f"Created Mux live stream with id={live_stream.id}")
        return live_stream

    def _get_live_stream(self, live_stream_id: str) -> MuxLiveStream:
        live_api = mux_python.LiveStreamsApi(self._get_api_client())
        mux_data = live_api.get_live_stream(live_stream_id).data  # type: ignore[attr-defined]
        return MuxLiveStream(
            id=mux_data.id,
            stream_key=mux_data.stream_key,
            status=mux_data.status,
            playback_ids=_playback_ids(mux_data.playback_ids),
            active_asset_id=mux_data.active_asset_id,
            recent_asset_ids=list(mux_data.recent_asset_ids or []),
        )

    async def get_live_stream(self, live_stream_id: str) -> MuxLiveStream:
        """Current state of a live stream: idle, active or disabled."""
        live_stream = await asyncio.to_thread(self._get_live_stream, live_stream_id)
        logger.debug(f"Mux live stream {live_stream_id} status={live_stream.status}")
        return live_stream

    def rtmp_url(self, stream_key: str) -> str:
        """Full RTMP ingest URL for a stream key."""
        return f"{self._cfg.MUX_RTMP_INGEST_BASE_URL.rstrip('/')}/app/{stream_key}"

    # ==================== UPLOADS ====================

    def _create_direct_upload(self, cors_origin: str, passthrough: str | None) -> MuxUpload:
        uploads_api = mux_python.DirectUploadsApi(self._get_api_client())
        request = mux_python.CreateUploadRequest(
            cors_origin=cors_origin,
            new_asset_settings=mux_python.CreateAssetRequest(
                playback_policy=["public"],
                passthrough=passthrough,
            ),
        )
        upload = uploads_api.create_direct_upload(request).data  # type: ignore[attr-defined]
        return MuxUpload(id=upload.id, url=upload.url, status=upload.status)

    async def create_direct_upload(self, passthrough: str | None = None) -> MuxUpload:
        """Request a direct upload URL for a recording file.

        Args:
            passthrough: Copied onto the created asset (our stream_id)
        """
        cors_origin = self._cfg.MUX_UPLOAD_CORS_ORIGIN
        logger.info(f"Creating Mux direct upload passthrough={passthrough}")
        upload = await asyncio.to_thread(self._create_direct_upload, cors_origin, passthrough)
        logger.info(f"Created Mux direct upload id={upload.id}")
        return upload

    def _get_direct_upload(self, upload_id: str) -> MuxUpload:
        uploads_api = mux_python.DirectUploadsApi(self._get_api_client())
        upload = uploads_api.get_direct_upload(upload_id).data  # type: ignore[attr-defined]
        error = getattr(upload, "error", None)
        return MuxUpload(
            id=upload.id,
            url=upload.url,
            status=upload.status,
            asset_id=upload.asset_id,
            error=getattr(error, "message", None) if error else None,
        )

    async def get_direct_upload(self, upload_id: str) -> MuxUpload:
        upload = await asyncio.to_thread(self._get_direct_upload, upload_id)
        logger.debug(f"Mux upload {upload_id} status={upload.status} asset_id={upload.asset_id}")
        return upload

    async def upload_file(
        self,
        upload_url: str,
        data: bytes,
        content_type: str = "video/webm",
    ) -> None:
        """PUT recording bytes to a direct upload URL.

        Raises:
            httpx.HTTPStatusError: If the upload endpoint rejects the file
        """
        logger.info(f"Uploading {len(data)} bytes to Mux direct upload")
        async with httpx.AsyncClient(timeout=self._cfg.MUX_UPLOAD_TIMEOUT_SECONDS) as client:
            response = await client.put(
                upload_url,
                content=data,
                headers={"Content-Type": content_type},
            )
            response.raise_for_status()

    # ==================== ASSETS ====================

    def _get_asset(self, asset_id: str) -> MuxAsset:
        assets_api = mux_python.AssetsApi(self._get_api_client())
        asset = assets_api.get_asset(asset_id).data  # type: ignore[attr-defined]
        errors = getattr(asset, "errors", None)
        return MuxAsset(
            id=asset.id,
            status=asset.status,
            playback_ids=_playback_ids(asset.playback_ids),
            duration=asset.duration,
            errors=list(getattr(errors, "messages", None) or []) if errors else [],
        )

    async def get_asset(self, asset_id: str) -> MuxAsset:
        asset = await asyncio.to_thread(self._get_asset, asset_id)
        logger.debug(f"Mux asset {asset_id} status={asset.status}")
        return asset


mux_service = MuxService()
