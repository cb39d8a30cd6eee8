import inspect
import sys
from os import environ
from typing import Any, Literal
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from app.utils.app_errors import AppErrorCode


def format_error(ex: BaseException) -> str:
    from traceback import TracebackException

    return "".join(TracebackException.from_exception(ex).format())


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get("BUILD_COMMIT", "dev"))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = "OK"


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = AppErrorCode.E_INTERNAL_ERROR.value
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = "We are sorry, an error occurred."
    recoverable: bool = False


def api_failure(
    errcode: str | None = None,
    errmesg: Exception | str | None = None,
    *,
    recoverable: bool = False,
    trace: Any = None,
) -> ApiFailure:
    if not errcode:
        errcode = str(ApiFailure.model_fields["errcode"].default)

    if isinstance(errmesg, Exception):
        errmesg = format_error(errmesg)

    if not errmesg:
        errmesg = str(ApiFailure.model_fields["errmesg"].default)

    failure = ApiFailure(errcode=str(errcode), errmesg=errmesg, recoverable=recoverable)

    caller_frame = inspect.stack()[1]
    module = inspect.getmodule(caller_frame.frame)
    module_name = module.__name__ if module else caller_frame.filename
    caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

    logger.warning(
        f"{failure.errcode} {failure.erresid}\n{failure.errmesg} "
        f"caller={caller_info} trace={trace}"
    )

    return failure


def make_response(results: Any, *, status_code: int | None = None) -> ORJSONResponse:
    if isinstance(results, Exception):
        results = api_failure(errmesg=results)
        if status_code is None:
            status_code = 500
    elif isinstance(results, ApiFailure):
        if status_code is None:
            internal = results.errcode == AppErrorCode.E_INTERNAL_ERROR.value
            status_code = 500 if internal else 400
    elif status_code is None:
        status_code = 200

    return ORJSONResponse(
        status_code=status_code,
        content=results.model_dump(mode="json") if hasattr(results, "model_dump") else results,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(AppErrorCode.E_INVALID_PARAMS.value, errmesg=str(errors))

    return ORJSONResponse(status_code=422, content=failure.model_dump())


def init_logger(debug: bool = False):
    logger.remove()

    commit_id = environ.get("BUILD_COMMIT", "dev")

    if debug:
        logger_level = "DEBUG"
        logger_format = (
            f"<yellow>livecast:{commit_id}</yellow> | "
            "<green>{time:MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        logger_level = "INFO"
        logger_format = (
            f"livecast:{commit_id} | "
            "{time:MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
