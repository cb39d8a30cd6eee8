from fastapi import APIRouter, Header, Request

from app.api.dependency import CurrentUser, StreamServiceDep
from app.api.schemas.base import ApiOut
from app.domain.live.stream.stream_models import StreamResponse

router = APIRouter(prefix="/streams/{stream_id}", tags=["Recording"])


@router.post("/recording")
async def upload_recording(
    stream_id: str,
    request: Request,
    user: CurrentUser,
    service: StreamServiceDep,
    content_type: str = Header("video/webm", alias="content-type"),
) -> ApiOut[StreamResponse]:
    """Upload the recording file as the raw request body. Owner only.

    The recording is PROCESSING on return; readiness arrives via poller or webhook.
    """
    data = await request.body()
    result = await service.upload_recording(stream_id, user.user_id, data, content_type)
    return ApiOut[StreamResponse](results=result)
