"""Application error taxonomy.

Every failure the stream core reports to a caller is an `AppError` carrying a
stable `AppErrorCode`, an HTTP status and a `recoverable` flag telling clients
whether retrying the same request may succeed.
"""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_UNAUTHORIZED = "E_UNAUTHORIZED"
    E_NOT_FOUND = "E_NOT_FOUND"
    E_ALREADY_BROADCASTING = "E_ALREADY_BROADCASTING"
    E_NO_ACTIVE_BROADCAST = "E_NO_ACTIVE_BROADCAST"
    E_CAPACITY_EXCEEDED = "E_CAPACITY_EXCEEDED"
    E_ALREADY_HOST = "E_ALREADY_HOST"
    E_NOT_A_HOST = "E_NOT_A_HOST"
    E_INVITE_INVALID = "E_INVITE_INVALID"
    E_UNSUPPORTED_STREAM_TYPE = "E_UNSUPPORTED_STREAM_TYPE"
    E_EXTERNAL_SERVICE_ERROR = "E_EXTERNAL_SERVICE_ERROR"
    E_SIGNATURE_INVALID = "E_SIGNATURE_INVALID"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


def _caller_info() -> str:
    # First frame outside this module, so helper constructors report their caller
    for frame_info in inspect.stack()[2:]:
        module = inspect.getmodule(frame_info.frame)
        module_name = module.__name__ if module else frame_info.filename
        if module_name != __name__:
            return f"{module_name}:{frame_info.function}:{frame_info.lineno}"
    return "unknown"


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502


class AppError(Exception):
    """Domain error rendered as an ApiFailure by the API layer.

    Args:
        errcode: Stable error code
        errmesg: Human readable message
        status_code: HTTP status returned to the caller
        recoverable: Whether retrying the same request may succeed
        upstream_status: Status reported by an external service, if any
    """

    def __init__(
        self,
        errcode: AppErrorCode | str,
        errmesg: str,
        status_code: HttpStatusCode | int = HttpStatusCode.BAD_REQUEST,
        *,
        recoverable: bool = False,
        upstream_status: int | None = None,
    ):
        super().__init__(errmesg)
        self.errcode = str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.recoverable = recoverable
        self.upstream_status = upstream_status
        self.erresid = uuid4().hex[:10]

        self.caller_info = _caller_info()

    def __repr__(self) -> str:
        return f"AppError({self.errcode}, {self.errmesg!r}, {self.status_code})"


def not_found(what: str) -> AppError:
    return AppError(AppErrorCode.E_NOT_FOUND, f"{what} not found", HttpStatusCode.NOT_FOUND)


def unauthorized(errmesg: str) -> AppError:
    return AppError(AppErrorCode.E_UNAUTHORIZED, errmesg, HttpStatusCode.FORBIDDEN)


def external_service_error(service: str, exc: Exception) -> AppError:
    """Wrap an upstream failure, keeping the upstream status when the SDK exposes one."""
    upstream_status = getattr(exc, "status", None)
    if not isinstance(upstream_status, int):
        upstream_status = None
    return AppError(
        AppErrorCode.E_EXTERNAL_SERVICE_ERROR,
        f"{service} request failed: {exc}",
        HttpStatusCode.BAD_GATEWAY,
        recoverable=True,
        upstream_status=upstream_status,
    )
