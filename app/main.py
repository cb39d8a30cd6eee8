import time
import uuid
from contextlib import asynccontextmanager
from os import environ

import logfire
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from livekit.api.twirp_client import TwirpError
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.errors import app_error_handler, twirp_error_handler
from app.api.routers import egress, hosts, invites, recording, streams
from app.api.utils import api_failure, init_logger, validation_exception_handler
from app.api.webhooks import mux as mux_webhook
from app.app_config import AppEnvironConfig, get_app_environ_config
from app.domain.live.stream.stream_domain import StreamService
from app.schemas import init_beanie_odm
from app.services.app_db import close_mongo_client, get_mongo_client
from app.services.stream_store import BeanieStreamStore
from app.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

API_PREFIX = "/api/v1"
REQUEST_ID_HEADER = "x-request-id"


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, tagged with a short request id echoed back to the caller."""

    async def dispatch(self, request: Request, call_next):  # type: ignore
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.exception(
                f"[{request_id}] {route} failed after {elapsed_ms:.2f}ms: "
                f"{type(exc).__name__}: {exc}"
            )
            failure = api_failure(
                errcode=AppErrorCode.E_INTERNAL_ERROR.value,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
                content=failure.model_dump(),
                headers={REQUEST_ID_HEADER: request_id},
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"[{request_id}] {route} -> {response.status_code} ({elapsed_ms:.2f}ms)")
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def configure_logfire(server: FastAPI, app_config: AppEnvironConfig) -> None:
    logger.info("Logfire initializing")
    logfire.configure(
        token=app_config.LOGFIRE_TOKEN,
        service_name="livecast-core",
        service_version=environ.get("BUILD_COMMIT") or "dev",
    )
    logfire.instrument_fastapi(server, capture_headers=True)
    logfire.instrument_pymongo(capture_statement=app_config.DEBUG)
    logfire.instrument_pydantic()
    logger.info("Logfire instrumented fastapi, pymongo and pydantic")


@asynccontextmanager
async def lifespan(server: FastAPI):
    app_config = get_app_environ_config()
    init_logger(debug=app_config.DEBUG)
    logger.info("Application startup...")

    mongo_client = get_mongo_client()
    await init_beanie_odm(mongo_client, app_config.MONGO_DB)
    logger.info(f"Beanie initialized on database {app_config.MONGO_DB}")

    server.state.stream_service = StreamService(BeanieStreamStore(mongo_client))

    if app_config.LOGFIRE_ENABLE:
        configure_logfire(server, app_config)

    yield

    logger.info("Application shutdown...")
    # Pending recording polls are cancelled; webhooks still converge the state later
    await server.state.stream_service.shutdown()
    close_mongo_client()


def create_app(*, lifespan_handler=lifespan) -> FastAPI:
    app_config = get_app_environ_config()
    server = FastAPI(
        version="1.0",
        title="LiveCast Stream API",
        default_response_class=ORJSONResponse,
        lifespan=lifespan_handler,
    )

    server.add_middleware(HTTPLoggingMiddleware)
    server.add_middleware(
        CORSMiddleware,  # type: ignore
        allow_origins=app_config.API_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    server.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
    server.add_exception_handler(AppError, app_error_handler)  # type: ignore
    server.add_exception_handler(TwirpError, twirp_error_handler)  # type: ignore

    for module in (streams, hosts, invites, egress, recording, mux_webhook):
        server.include_router(module.router, prefix=API_PREFIX)

    return server


app = create_app()


def build_granian_kwargs():
    app_config = get_app_environ_config()
    return {
        "interface": "asgi",
        "address": app_config.API_HOST,
        "port": app_config.API_PORT,
        "workers": app_config.API_WORKERS,
        "reload": app_config.DEBUG,
    }


if __name__ == "__main__":
    Granian("app.main:app", **build_granian_kwargs()).serve()
