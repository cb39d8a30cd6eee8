from fastapi import APIRouter, Query

from app.api.dependency import CurrentUser, StreamServiceDep
from app.api.schemas.base import ApiOut
from app.api.schemas.stream import StartEgressIn, StopEgressOut
from app.api.utils import api_failure, make_response
from app.domain.live.stream.stream_models import (
    EgressJob,
    EgressStartResponse,
    EgressStatusResponse,
)
from app.utils.app_errors import AppErrorCode, HttpStatusCode

router = APIRouter(tags=["Egress"])


@router.post("/streams/{stream_id}/egress")
async def start_egress(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
    body: StartEgressIn | None = None,
) -> ApiOut[EgressStartResponse]:
    """Push the stream's room to its RTMP ingest. Owner or active host."""
    layout = body.layout if body else "speaker"
    result = await service.start_egress(stream_id, user.user_id, layout=layout)
    return ApiOut[EgressStartResponse](results=result)


@router.get("/streams/{stream_id}/egress")
async def get_egress_status(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[EgressStatusResponse]:
    result = await service.get_egress_status(stream_id)
    return ApiOut[EgressStatusResponse](results=result)


@router.get("/egress")
async def list_egress(
    user: CurrentUser,
    service: StreamServiceDep,
    room_name: str | None = Query(None, description="Restrict to one room"),
) -> ApiOut[list[EgressJob]]:
    """Active egress jobs, for operators and reconciliation."""
    result = await service.list_egress(room_name=room_name)
    return ApiOut[list[EgressJob]](results=result)


@router.post("/egress/{egress_id}/stop")
async def stop_egress(
    egress_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
):
    """Stop an egress with retries. A 502 means it could not be confirmed stopped."""
    stopped = await service.stop_egress(egress_id)
    if not stopped:
        failure = api_failure(
            AppErrorCode.E_EXTERNAL_SERVICE_ERROR.value,
            f"Failed to stop egress {egress_id} after multiple attempts",
            recoverable=True,
        )
        return make_response(failure, status_code=HttpStatusCode.BAD_GATEWAY)

    return ApiOut[StopEgressOut](results=StopEgressOut(egress_id=egress_id, stopped=True))
