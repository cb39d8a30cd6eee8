"""Mux webhook endpoint for recording events.

Verified events are merged into the stream's recording state through the same
conditional writes the recording poller uses, so deliveries may arrive late,
twice, or out of order relative to polling.

Handled events:
- video.live_stream.recording: a live stream started recording into an asset
- video.asset.ready: asset playable, recording becomes READY
- video.asset.errored: asset processing failed, recording becomes FAILED

Any other event type is acknowledged with 200 so Mux does not redeliver it.

References:
- https://docs.mux.com/guides/video/listen-for-webhooks
- https://docs.mux.com/guides/video/verify-webhook-signatures
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Awaitable, Callable
from typing import Any

import orjson
from fastapi import APIRouter, Header, Request
from loguru import logger
from pydantic import BaseModel, ValidationError

from app.api.dependency import StreamServiceDep
from app.api.utils import ApiSuccess
from app.api.webhooks.schemas.mux import (
    AssetErroredEvent,
    AssetReadyEvent,
    LiveStreamRecordingEvent,
    MuxEventType,
)
from app.app_config import get_app_environ_config
from app.domain.live.stream.stream_domain import StreamService
from app.domain.live.stream.stream_models import StreamResponse
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

SIGNATURE_TOLERANCE_SECONDS = 300

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class MuxWebhookSuccess(ApiSuccess):
    results: dict[str, Any]  # type: ignore[assignment]


def _signature_error(errmesg: str) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_SIGNATURE_INVALID,
        errmesg=errmesg,
        status_code=HttpStatusCode.UNAUTHORIZED,
    )


def _invalid_request(errmesg: str) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_INVALID_REQUEST,
        errmesg=errmesg,
        status_code=HttpStatusCode.BAD_REQUEST,
    )


def _parse_signature_header(signature_header: str) -> tuple[str, list[str]]:
    """Split `t=<unix>,v1=<hex>[,v1=<hex>...]` into the timestamp and its signatures."""
    timestamp: str | None = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise _signature_error("Malformed mux-signature header, expected t=...,v1=...")
    return timestamp, signatures


def verify_mux_signature(
    payload: bytes,
    signature_header: str,
    signing_secret: str,
    tolerance_seconds: int = SIGNATURE_TOLERANCE_SECONDS,
    now: int | None = None,
) -> bool:
    """Check a Mux webhook HMAC-SHA256 signature.

    The signed message is `<timestamp>.<raw body>`. Any `v1` value in the header
    may match, which keeps deliveries valid while a secret is being rotated.

    Args:
        payload: Raw request body bytes
        signature_header: Value of the 'mux-signature' header
        signing_secret: Webhook signing secret from the Mux dashboard
        tolerance_seconds: Maximum clock distance from the signed timestamp
        now: Current unix time, defaults to the wall clock

    Returns:
        True if one of the signatures matches

    Raises:
        AppError: E_SIGNATURE_INVALID if the header is malformed or the timestamp
            is outside the tolerance window
    """
    timestamp, signatures = _parse_signature_header(signature_header)
    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise _signature_error(f"Invalid timestamp in mux-signature: {timestamp}") from exc

    current = int(time.time()) if now is None else now
    drift = abs(current - signed_at)
    if drift > tolerance_seconds:
        raise _signature_error(f"Webhook timestamp is {drift}s away from now, replay rejected")

    expected = hmac.new(
        signing_secret.encode("utf-8"),
        timestamp.encode("utf-8") + b"." + payload,
        hashlib.sha256,
    ).hexdigest()
    return any(hmac.compare_digest(expected, signature) for signature in signatures)


def _summary(stream: StreamResponse | None) -> dict[str, Any]:
    if stream is None:
        return {"handled": False, "reason": "stream_not_found"}
    return {
        "handled": True,
        "stream_id": stream.stream_id,
        "recording_status": stream.recording_status.value,
    }


async def handle_asset_ready(service: StreamService, event: AssetReadyEvent) -> dict[str, Any]:
    data = event.data
    logger.info(
        f"Asset {data.id} ready (upload={data.upload_id}, live_stream={data.live_stream_id}, "
        f"playback={data.first_playback_id})"
    )
    stream = await service.handle_asset_ready(
        data.id,
        data.first_playback_id,
        upload_id=data.upload_id,
        live_stream_id=data.live_stream_id,
    )
    return _summary(stream)


async def handle_asset_errored(service: StreamService, event: AssetErroredEvent) -> dict[str, Any]:
    data = event.data
    logger.warning(f"Asset {data.id} errored (upload={data.upload_id}): {data.errors}")
    stream = await service.handle_asset_errored(
        data.id,
        upload_id=data.upload_id,
        live_stream_id=data.live_stream_id,
    )
    return _summary(stream)


async def handle_live_stream_recording(
    service: StreamService, event: LiveStreamRecordingEvent
) -> dict[str, Any]:
    data = event.data
    asset_id = data.active_asset_id or next(reversed(data.recent_asset_ids), None)
    logger.info(f"Live stream {data.id} recording into asset {asset_id}")
    stream = await service.handle_live_stream_recording(data.id, asset_id)
    return _summary(stream)


EventHandler = Callable[[StreamService, Any], Awaitable[dict[str, Any]]]

_HANDLERS: dict[str, tuple[type[BaseModel], EventHandler]] = {
    MuxEventType.ASSET_READY.value: (AssetReadyEvent, handle_asset_ready),
    MuxEventType.ASSET_ERRORED.value: (AssetErroredEvent, handle_asset_errored),
    MuxEventType.LIVE_STREAM_RECORDING.value: (
        LiveStreamRecordingEvent,
        handle_live_stream_recording,
    ),
}


@router.post("/mux", response_model=MuxWebhookSuccess)
async def mux_webhook(
    request: Request,
    service: StreamServiceDep,
    mux_signature: str | None = Header(None, alias="mux-signature"),
) -> MuxWebhookSuccess:
    """Verify a Mux delivery and merge it into the matching stream.

    Streams are found by the upload, asset or live stream ids recorded on them,
    never by an id taken from the payload's passthrough.
    """
    body = await request.body()

    signing_secret = get_app_environ_config().MUX_WEBHOOK_SIGNING_SECRET
    if not signing_secret:
        logger.error("MUX_WEBHOOK_SIGNING_SECRET not configured, rejecting webhook")
        raise _signature_error("Webhook signing secret not configured")
    if not mux_signature:
        raise _signature_error("Missing mux-signature header")
    if not verify_mux_signature(body, mux_signature, signing_secret):
        raise _signature_error("Invalid webhook signature")

    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError as exc:
        raise _invalid_request(f"Invalid JSON: {exc!s}") from exc

    event_type = payload.get("type") if isinstance(payload, dict) else None
    if not event_type:
        raise _invalid_request("Missing 'type' field")

    logger.info(f"Mux webhook {event_type} id={payload.get('id', 'unknown')} ({len(body)} bytes)")

    entry = _HANDLERS.get(event_type)
    if entry is None:
        logger.info(f"Ignoring unhandled Mux event type {event_type}")
        return MuxWebhookSuccess(results={"handled": False, "reason": "unhandled_event_type"})

    event_model, handler = entry
    try:
        event = event_model.model_validate(payload)
    except ValidationError as exc:
        raise AppError(
            errcode=AppErrorCode.E_INVALID_PARAMS,
            errmesg=f"Failed to parse {event_type} event: {exc!s}",
            status_code=HttpStatusCode.UNPROCESSABLE_ENTITY,
        ) from exc

    return MuxWebhookSuccess(results=await handler(service, event))
