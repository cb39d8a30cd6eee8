from fastapi import APIRouter

from app.api.dependency import CurrentUser, StreamServiceDep
from app.api.schemas.base import ApiOut
from app.api.schemas.stream import CreateInviteIn
from app.domain.live.stream.stream_models import (
    HostInviteResponse,
    InviteCreatedResponse,
    InviteCreateParams,
)

router = APIRouter(tags=["Invites"])


@router.get("/streams/{stream_id}/invites")
async def list_invites(
    stream_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[list[HostInviteResponse]]:
    """Active, unexpired invites. Owner or active host."""
    result = await service.list_invites(stream_id, user.user_id)
    return ApiOut[list[HostInviteResponse]](results=result)


@router.post("/streams/{stream_id}/invites")
async def create_invite(
    stream_id: str,
    body: CreateInviteIn,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[InviteCreatedResponse]:
    params = InviteCreateParams(
        role=body.role,
        max_uses=body.max_uses,
        expires_in_hours=body.expires_in_hours,
    )
    result = await service.create_invite(stream_id, user.user_id, params)
    return ApiOut[InviteCreatedResponse](results=result)


@router.delete("/invites/{invite_id}")
async def revoke_invite(
    invite_id: str,
    user: CurrentUser,
    service: StreamServiceDep,
) -> ApiOut[HostInviteResponse]:
    result = await service.revoke_invite(invite_id, user.user_id)
    return ApiOut[HostInviteResponse](results=result)
