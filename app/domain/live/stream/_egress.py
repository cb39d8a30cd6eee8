"""Egress controller: start, stop and list room composite egress jobs."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from livekit import api
from loguru import logger

from app.app_config import get_app_environ_config
from app.schemas import EgressStatus
from app.services.integrations.livekit_service import LivekitService, livekit_service
from app.utils.app_errors import AppError, external_service_error

from .stream_models import EgressJob

SleepFunc = Callable[[float], Awaitable[Any]]

# Every code the media room service reports has an entry; anything it adds
# later falls through to UNKNOWN with the raw value kept on the job.
EGRESS_STATUS_MAP: dict[int, EgressStatus] = {
    api.EgressStatus.EGRESS_STARTING: EgressStatus.STARTING,
    api.EgressStatus.EGRESS_ACTIVE: EgressStatus.ACTIVE,
    api.EgressStatus.EGRESS_ENDING: EgressStatus.ENDING,
    api.EgressStatus.EGRESS_COMPLETE: EgressStatus.COMPLETE,
    api.EgressStatus.EGRESS_FAILED: EgressStatus.FAILED,
    api.EgressStatus.EGRESS_ABORTED: EgressStatus.FAILED,
    api.EgressStatus.EGRESS_LIMIT_REACHED: EgressStatus.COMPLETE,
}


def translate_egress_status(raw: int) -> EgressStatus:
    return EGRESS_STATUS_MAP.get(int(raw), EgressStatus.UNKNOWN)


def _from_nanos(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1_000_000_000, tz=timezone.utc)


def to_egress_job(info: Any) -> EgressJob:
    """Build an EgressJob view from an SDK EgressInfo."""
    raw_status = int(info.status)
    status = translate_egress_status(raw_status)
    if status == EgressStatus.UNKNOWN:
        logger.warning(f"Egress {info.egress_id} reported unrecognized status {raw_status}")

    return EgressJob(
        egress_id=info.egress_id,
        room_name=info.room_name or None,
        status=status,
        raw_status=raw_status,
        started_at=_from_nanos(info.started_at),
        updated_at=_from_nanos(info.updated_at),
        ended_at=_from_nanos(info.ended_at),
        error=info.error or None,
    )


class EgressController:
    """Controls egress jobs that push a room's composed media to RTMP endpoints.

    `start` is a single attempt. `stop` retries with exponential backoff and
    reports exhaustion as False, leaving the job's real state to be found by
    a later `list_active` / `find_latest`.
    """

    def __init__(
        self,
        livekit: LivekitService | None = None,
        *,
        base_delay: float | None = None,
        max_retries: int | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        cfg = get_app_environ_config()
        self.livekit = livekit or livekit_service
        self.base_delay = cfg.EGRESS_STOP_BASE_DELAY if base_delay is None else base_delay
        self.max_retries = cfg.EGRESS_STOP_MAX_RETRIES if max_retries is None else max_retries
        self._sleep = sleep

    async def start(
        self,
        room_name: str,
        destination_urls: list[str],
        layout: str = "speaker",
    ) -> str:
        """Start a room composite egress.

        Raises:
            AppError: E_EXTERNAL_SERVICE_ERROR if the media room service rejects the request
        """
        try:
            info = await self.livekit.start_room_composite_egress(
                room_name=room_name,
                urls=destination_urls,
                layout=layout,
            )
        except AppError:
            raise
        except Exception as exc:
            logger.error(f"Egress start failed for room={room_name}: {exc}")
            raise external_service_error("Egress start", exc) from exc

        logger.info(f"Egress {info.egress_id} started for room={room_name}")
        return info.egress_id

    async def stop(self, egress_id: str, max_retries: int | None = None) -> bool:
        """Stop an egress, retrying with exponential backoff.

        Waits `base_delay * 2**failures` between attempts.

        Args:
            egress_id: Egress to stop
            max_retries: Total attempts (default: configured value, 3)

        Returns:
            True once a stop attempt succeeds, False when all attempts failed
        """
        attempts = self.max_retries if max_retries is None else max_retries
        failures = 0

        while failures < attempts:
            try:
                await self.livekit.stop_egress(egress_id)
                logger.info(f"Egress {egress_id} stopped (attempt {failures + 1})")
                return True
            except Exception as exc:
                failures += 1
                logger.warning(f"Failed to stop egress {egress_id} (attempt {failures}): {exc}")

                if failures < attempts:
                    await self._sleep(self.base_delay * 2**failures)

        logger.error(f"Giving up stopping egress {egress_id} after {attempts} attempts")
        return False

    async def list_active(
        self,
        room_name: str | None = None,
        egress_id: str | None = None,
        active: bool = True,
    ) -> list[EgressJob]:
        """List egress jobs, by default only the active ones."""
        try:
            items = await self.livekit.list_egress(
                room_name=room_name,
                egress_id=egress_id,
                active=active,
            )
        except AppError:
            raise
        except Exception as exc:
            logger.error(f"Egress list failed for room={room_name}: {exc}")
            raise external_service_error("Egress list", exc) from exc

        return [to_egress_job(item) for item in items]

    async def find_latest(self, room_name: str) -> EgressJob | None:
        """The active job for a room if there is one, else the most recently started."""
        jobs = await self.list_active(room_name=room_name, active=False)
        if not jobs:
            return None

        for job in jobs:
            if job.is_active:
                return job

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return max(jobs, key=lambda job: job.started_at or epoch)
