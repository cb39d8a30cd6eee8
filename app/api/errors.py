from fastapi import Request
from fastapi.responses import JSONResponse
from livekit.api.twirp_client import TwirpError
from loguru import logger

from app.api.utils import ApiFailure, make_response
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Custom exception handler for AppError.
    Converts AppError to ApiFailure and returns via make_response.
    """
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    if exc.upstream_status is not None:
        log_msg += f" upstream_status={exc.upstream_status}"

    if exc.errcode == AppErrorCode.E_INTERNAL_ERROR.value:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(
        errcode=exc.errcode,
        errmesg=exc.errmesg,
        erresid=exc.erresid,
        recoverable=exc.recoverable,
    )
    return make_response(failure, status_code=exc.status_code)


async def twirp_error_handler(request: Request, exc: TwirpError) -> JSONResponse:
    """
    Custom exception handler for TwirpError (LiveKit API errors) that escaped the
    adapter layer. Reported as an external service failure.
    """
    log_msg = f"TwirpError: code={exc.code} status={exc.status} msg={exc.message}"
    if exc.metadata:
        log_msg += f" metadata={exc.metadata}"

    if exc.status >= 500:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(
        errcode=AppErrorCode.E_EXTERNAL_SERVICE_ERROR.value,
        errmesg=f"Media room service error: {exc.message}",
        recoverable=True,
    )
    return make_response(failure, status_code=HttpStatusCode.BAD_GATEWAY)
