from typing import Annotated

from fastapi import Depends, Header, Request
from loguru import logger
from pydantic import BaseModel

from app.domain.live.stream.stream_domain import StreamService
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class User(BaseModel):
    user_id: str


async def get_current_user(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> User:
    # Identity is verified by the upstream gateway; only its result is trusted here.
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AppError(
            errcode=AppErrorCode.E_UNAUTHENTICATED,
            errmesg="Missing caller identity",
            status_code=HttpStatusCode.UNAUTHORIZED,
        )

    logger.debug("Authenticated user_id: {}", user_id)
    return User(user_id=user_id)


def get_stream_service(request: Request) -> StreamService:
    """Get the StreamService wired onto the application at startup."""
    return request.app.state.stream_service


CurrentUser = Annotated[User, Depends(get_current_user)]
StreamServiceDep = Annotated[StreamService, Depends(get_stream_service)]
