"""Recording ingestion: upload path, background poller and webhook merge.

Two reporters race to tell us a recording is ready: the poller started after
an upload, and Mux webhooks. Both feed `update_recording_status`, whose
conditional write makes the outcome independent of arrival order.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from app.app_config import get_app_environ_config
from app.schemas import RecordingStatus
from app.schemas.schema_utils import utc_now
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode, external_service_error

from ._base import BaseService
from .stream_models import StreamResponse

SleepFunc = Callable[[float], Awaitable[Any]]

UPLOAD_FAILED_STATUSES = {"errored", "cancelled", "timed_out"}


@dataclass
class RecordingJob:
    """One upload being polled until its asset is ready."""

    stream_id: str
    upload_id: str
    max_attempts: int
    attempt: int = 0
    next_poll_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)


class RecordingPoller:
    """Registry of background poll tasks keyed by upload id.

    Each job sleeps `initial_delay`, then ticks every `interval` seconds until
    the tick reports done or `max_attempts` is reached. A tick is bounded by
    `tick_timeout`; timeouts and errors count as attempts.
    """

    def __init__(
        self,
        *,
        initial_delay: float | None = None,
        interval: float | None = None,
        max_attempts: int | None = None,
        tick_timeout: float | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        cfg = get_app_environ_config()
        self.initial_delay = (
            cfg.RECORDING_POLL_INITIAL_DELAY if initial_delay is None else initial_delay
        )
        self.interval = cfg.RECORDING_POLL_INTERVAL if interval is None else interval
        self.max_attempts = cfg.RECORDING_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.tick_timeout = cfg.RECORDING_POLL_TICK_TIMEOUT if tick_timeout is None else tick_timeout
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self._jobs: dict[str, RecordingJob] = {}
        self._tick: Callable[[RecordingJob], Awaitable[bool]] | None = None
        self._on_exhausted: Callable[[RecordingJob], Awaitable[Any]] | None = None

    def bind(
        self,
        tick: Callable[[RecordingJob], Awaitable[bool]],
        on_exhausted: Callable[[RecordingJob], Awaitable[Any]],
    ) -> None:
        """Attach the per-tick check (returns True when polling is done) and the exhaustion handler."""
        self._tick = tick
        self._on_exhausted = on_exhausted

    @property
    def jobs(self) -> list[RecordingJob]:
        return list(self._jobs.values())

    def is_polling(self, upload_id: str) -> bool:
        task = self._tasks.get(upload_id)
        return task is not None and not task.done()

    def schedule(self, stream_id: str, upload_id: str) -> asyncio.Task:
        """Start polling an upload. Scheduling an upload already being polled returns its task."""
        if self._tick is None or self._on_exhausted is None:
            raise RuntimeError("RecordingPoller.bind() must be called before schedule()")

        existing = self._tasks.get(upload_id)
        if existing is not None and not existing.done():
            return existing

        job = RecordingJob(
            stream_id=stream_id,
            upload_id=upload_id,
            max_attempts=self.max_attempts,
            next_poll_at=utc_now() + timedelta(seconds=self.initial_delay),
        )
        task = asyncio.create_task(self._run(job), name=f"recording-poll-{upload_id}")
        self._tasks[upload_id] = task
        self._jobs[upload_id] = job
        # Runs even when the task is cancelled before its first step
        task.add_done_callback(partial(self._forget, upload_id))
        logger.info(
            f"Scheduled recording poll for stream {stream_id} upload {upload_id} "
            f"(initial_delay={self.initial_delay}s, interval={self.interval}s, "
            f"max_attempts={self.max_attempts})"
        )
        return task

    def cancel(self, upload_id: str) -> bool:
        task = self._tasks.get(upload_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled recording poll for upload {upload_id}")
        return True

    def cancel_for_stream(self, stream_id: str) -> int:
        upload_ids = [job.upload_id for job in self._jobs.values() if job.stream_id == stream_id]
        return sum(1 for upload_id in upload_ids if self.cancel(upload_id))

    async def shutdown(self) -> None:
        """Cancel every poll task and wait for them to finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Recording poller stopped {len(tasks)} task(s)")

    async def _run(self, job: RecordingJob) -> None:
        assert self._tick is not None and self._on_exhausted is not None
        await self._sleep(self.initial_delay)

        while True:
            job.attempt += 1
            try:
                done = await asyncio.wait_for(self._tick(job), timeout=self.tick_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Recording poll tick timed out for upload {job.upload_id} "
                    f"(attempt {job.attempt}/{job.max_attempts})"
                )
                done = False
            except Exception as exc:
                logger.warning(
                    f"Recording poll tick failed for upload {job.upload_id} "
                    f"(attempt {job.attempt}/{job.max_attempts}): {exc}"
                )
                done = False

            if done:
                logger.info(f"Recording poll finished for upload {job.upload_id}")
                return

            if job.attempt >= job.max_attempts:
                logger.warning(
                    f"Recording poll exhausted for upload {job.upload_id} "
                    f"after {job.attempt} attempts"
                )
                try:
                    await self._on_exhausted(job)
                except Exception:
                    logger.exception(
                        f"Could not record exhausted poll for upload {job.upload_id} "
                        f"of stream {job.stream_id}"
                    )
                return

            job.next_poll_at = utc_now() + timedelta(seconds=self.interval)
            await self._sleep(self.interval)

    def _forget(self, upload_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(upload_id) is task:
            del self._tasks[upload_id]
            self._jobs.pop(upload_id, None)


class RecordingOperations(BaseService):
    """Upload path and status merge for stream recordings."""

    def __init__(self, *args, poller: RecordingPoller | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.poller = poller or RecordingPoller()
        self.poller.bind(self._poll_tick, self._on_poll_exhausted)

    # ==================== UPLOAD ====================

    async def upload_recording(
        self,
        stream_id: str,
        user_id: str,
        data: bytes,
        content_type: str = "video/webm",
    ) -> StreamResponse:
        """Upload a recording file and start polling for its asset.

        Raises:
            AppError: E_UNAUTHORIZED (not owner), E_INVALID_REQUEST (a recording
                is already processing or ready), E_EXTERNAL_SERVICE_ERROR
                (upload failed; the recording is marked FAILED)
        """
        stream = await self._require_owner(stream_id, user_id)
        if not data:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                "Recording file is empty",
                HttpStatusCode.BAD_REQUEST,
            )

        started = await self.store.update_recording(
            stream_id,
            allowed_from={RecordingStatus.NONE, RecordingStatus.UPLOADING, RecordingStatus.FAILED},
            updates={
                "recording_status": RecordingStatus.UPLOADING,
                "recording_id": None,
                "recording_url": None,
                "recording_asset_id": None,
            },
        )
        if started is None:
            raise AppError(
                AppErrorCode.E_INVALID_REQUEST,
                f"Recording for stream {stream_id} is already processing or ready",
                HttpStatusCode.CONFLICT,
            )
        if stream.recording_id:
            self.poller.cancel(stream.recording_id)

        try:
            upload = await self.mux.create_direct_upload(passthrough=stream_id)
            if not upload.url:
                raise ValueError(f"Direct upload {upload.id} has no upload URL")
            await self.mux.upload_file(upload.url, data, content_type=content_type)
        except Exception as exc:
            logger.error(f"Recording upload failed for stream {stream_id}: {exc}")
            await self.update_recording_status(stream_id, RecordingStatus.FAILED)
            if isinstance(exc, AppError):
                raise
            raise external_service_error("Recording upload", exc) from exc

        updated = await self.update_recording_status(
            stream_id, RecordingStatus.PROCESSING, recording_id=upload.id
        )
        if updated is not None and updated.recording_id == upload.id:
            self.poller.schedule(stream_id, upload.id)

        logger.info(f"Recording for stream {stream_id} uploaded as {upload.id}")
        return updated or started

    # ==================== POLLER ====================

    async def _poll_tick(self, job: RecordingJob) -> bool:
        """One poll of upload and asset state. Returns True when polling should stop."""
        stream = await self.store.get_stream(job.stream_id)
        if stream is None:
            logger.info(f"Stream {job.stream_id} gone, stopping poll of {job.upload_id}")
            return True
        if stream.recording_id != job.upload_id:
            logger.info(f"Upload {job.upload_id} superseded on stream {job.stream_id}")
            return True
        if stream.recording_status in {RecordingStatus.READY, RecordingStatus.FAILED}:
            return True

        upload = await self.mux.get_direct_upload(job.upload_id)
        if upload.status in UPLOAD_FAILED_STATUSES:
            logger.warning(f"Upload {job.upload_id} {upload.status}: {upload.error}")
            await self.update_recording_status(job.stream_id, RecordingStatus.FAILED)
            return True

        if upload.status != "asset_created" or not upload.asset_id:
            return False

        if stream.recording_asset_id != upload.asset_id:
            await self.store.update_stream(job.stream_id, {"recording_asset_id": upload.asset_id})

        asset = await self.mux.get_asset(upload.asset_id)
        if asset.status == "ready" and asset.playback_ids:
            await self.update_recording_status(
                job.stream_id,
                RecordingStatus.READY,
                recording_url=asset.playback_ids[0].id,
                recording_asset_id=asset.id,
            )
            return True

        if asset.status == "errored":
            logger.warning(f"Asset {asset.id} errored: {asset.errors}")
            await self.update_recording_status(
                job.stream_id, RecordingStatus.FAILED, recording_asset_id=asset.id
            )
            return True

        return False

    async def _on_poll_exhausted(self, job: RecordingJob) -> None:
        await self.update_recording_status(job.stream_id, RecordingStatus.FAILED)

    # ==================== WEBHOOKS ====================

    async def _resolve_stream(
        self,
        refs: list[str | None],
        live_stream_id: str | None = None,
    ) -> StreamResponse | None:
        for ref in refs:
            if ref:
                stream = await self.store.find_stream_by_recording_ref(ref)
                if stream is not None:
                    return stream
        if live_stream_id:
            return await self.store.find_stream_by_live_stream_id(live_stream_id)
        return None

    async def handle_asset_ready(
        self,
        asset_id: str,
        playback_id: str | None,
        upload_id: str | None = None,
        live_stream_id: str | None = None,
    ) -> StreamResponse | None:
        """Merge an asset-ready notification. Returns None when no stream matches."""
        stream = await self._resolve_stream([upload_id, asset_id], live_stream_id)
        if stream is None:
            logger.warning(f"No stream for ready asset {asset_id} (upload={upload_id})")
            return None
        if not playback_id:
            logger.warning(f"Ready asset {asset_id} has no playback id, leaving it to the poller")
            return stream

        updated = await self.update_recording_status(
            stream.stream_id,
            RecordingStatus.READY,
            recording_url=playback_id,
            recording_asset_id=asset_id,
        )
        self.poller.cancel_for_stream(stream.stream_id)
        return updated

    async def handle_asset_errored(
        self,
        asset_id: str,
        upload_id: str | None = None,
        live_stream_id: str | None = None,
    ) -> StreamResponse | None:
        stream = await self._resolve_stream([upload_id, asset_id], live_stream_id)
        if stream is None:
            logger.warning(f"No stream for errored asset {asset_id} (upload={upload_id})")
            return None

        updated = await self.update_recording_status(
            stream.stream_id, RecordingStatus.FAILED, recording_asset_id=asset_id
        )
        self.poller.cancel_for_stream(stream.stream_id)
        return updated

    async def handle_live_stream_recording(
        self,
        live_stream_id: str,
        asset_id: str | None,
    ) -> StreamResponse | None:
        """A live stream started recording into a new asset."""
        stream = await self.store.find_stream_by_live_stream_id(live_stream_id)
        if stream is None:
            logger.warning(f"No stream for recording live stream {live_stream_id}")
            return None

        fields: dict[str, Any] = {}
        if asset_id:
            fields = {"recording_id": asset_id, "recording_asset_id": asset_id}
        return await self.update_recording_status(
            stream.stream_id, RecordingStatus.PROCESSING, **fields
        )
