from fastapi import APIRouter

from app.api.dependency import CurrentUser, StreamServiceDep
from app.api.schemas.base import ApiOut
from app.api.schemas.stream import AddHostIn, JoinStreamIn
from app.domain.live.stream.stream_models import StreamHostResponse

router = APIRouter(prefix="/streams/{stream_id}", tags=["Hosts"])


@router.get("/hosts")
async def list_hosts(stream_id: str, service: StreamServiceDep) -> ApiOut[list[StreamHostResponse]]:
    """Active hosts ordered by join time."""
    result = await service.list_hosts(stream_id)
    return ApiOut[list[StreamHostResponse]](results=result)


@router.post("/hosts")
async def add_host(
    stream_id: str,
    body: AddHostIn,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamHostResponse]:
    """Owner adds a host directly, without an invite."""
    result = await service.join(stream_id, body.user_id, caller_id=user.user_id)
    return ApiOut[StreamHostResponse](results=result)


@router.delete("/hosts/{host_id}")
async def remove_host(
    stream_id: str,
    host_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamHostResponse]:
    result = await service.remove_host(stream_id, host_id, user.user_id)
    return ApiOut[StreamHostResponse](results=result)


@router.post("/join")
async def join_stream(
    stream_id: str,
    body: JoinStreamIn,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[StreamHostResponse]:
    """Join as a host with an invite token, or as the owner."""
    result = await service.join(stream_id, user.user_id, token=body.token)
    return ApiOut[StreamHostResponse](results=result)
