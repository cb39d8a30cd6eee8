from fastapi import APIRouter

from app.api.dependency import CurrentUser, StreamServiceDep
from app.api.schemas.base import ApiOut
from app.api.schemas.stream import CreateStreamIn, HostTokenIn, LeaveStreamOut
from app.domain.live.stream.stream_models import (
    RoomTokenResponse,
    StreamCreateParams,
    StreamHealthResponse,
    StreamResponse,
)

router = APIRouter(prefix="/streams", tags=["Streams"])


@router.post("")
async def create_stream(
    body: CreateStreamIn,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamResponse]:
    """Create a new stream owned by the authenticated user."""
    params = StreamCreateParams(
        owner_id=user.user_id,
        title=body.title,
        description=body.description,
        stream_type=body.stream_type,
        max_hosts=body.max_hosts,
    )
    result = await service.create_stream(params)
    return ApiOut[StreamResponse](results=result)


@router.get("/{stream_id}")
async def get_stream(stream_id: str, service: StreamServiceDep) -> ApiOut[StreamResponse]:
    result = await service.get_stream(stream_id)
    return ApiOut[StreamResponse](results=result)


@router.get("/{stream_id}/health")
async def get_stream_health(
    stream_id: str, service: StreamServiceDep
) -> ApiOut[StreamHealthResponse]:
    """Stream summary with room participants and ingest status."""
    result = await service.get_stream_health(stream_id)
    return ApiOut[StreamHealthResponse](results=result)


@router.post("/{stream_id}/start")
async def start_stream(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamResponse]:
    """Go live. Owner or active host."""
    result = await service.start_stream(stream_id, user.user_id)
    return ApiOut[StreamResponse](results=result)


@router.post("/{stream_id}/end")
async def end_stream(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamResponse]:
    """End the broadcast. Owner only."""
    result = await service.end_stream(stream_id, user.user_id)
    return ApiOut[StreamResponse](results=result)


@router.post("/{stream_id}/leave")
async def leave_stream(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[LeaveStreamOut]:
    host = await service.leave(stream_id, user.user_id)
    stream = await service.get_stream(stream_id)
    return ApiOut[LeaveStreamOut](results=LeaveStreamOut(host_id=host.host_id, stream=stream))


@router.post("/{stream_id}/token")
async def get_host_token(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
    body: HostTokenIn | None = None,
) -> ApiOut[RoomTokenResponse]:
    """Publish credential for the stream's room. Owner or active host."""
    display_name = body.display_name if body else None
    result = await service.get_host_token(stream_id, user.user_id, display_name)
    return ApiOut[RoomTokenResponse](results=result)


@router.get("/{stream_id}/viewer-token")
async def get_viewer_token(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[RoomTokenResponse]:
    result = await service.get_viewer_token(stream_id, user.user_id)
    return ApiOut[RoomTokenResponse](results=result)
