from pydantic import BaseModel

from app.config import config


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get_bool("DEBUG")

    # API server
    API_HOST: str = config.get("API_HOST", "0.0.0.0")  # type: ignore[assignment]
    API_PORT: int = config.get_int("API_PORT", 8000, minimum=1, maximum=65535)
    API_WORKERS: int = config.get_int("API_WORKERS", 1, minimum=1)
    API_CORS_ORIGINS: list[str] = config.get_list("API_CORS_ORIGINS", "*")

    # Observability
    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE")
    LOGFIRE_TOKEN: str | None = config.get("LOGFIRE_TOKEN")

    # LiveKit configuration
    LIVEKIT_URL: str | None = config.get("LIVEKIT_URL")
    LIVEKIT_API_KEY: str | None = config.get("LIVEKIT_API_KEY")
    LIVEKIT_API_SECRET: str | None = config.get("LIVEKIT_API_SECRET")
    # Room created on demand is dropped after this many idle seconds
    LIVEKIT_ROOM_EMPTY_TIMEOUT: int = config.get_int("LIVEKIT_ROOM_EMPTY_TIMEOUT", 300, minimum=0)

    # Mux configuration
    MUX_TOKEN_ID: str | None = config.get("MUX_TOKEN_ID")
    MUX_TOKEN_SECRET: str | None = config.get("MUX_TOKEN_SECRET")
    MUX_WEBHOOK_SIGNING_SECRET: str | None = config.get("MUX_WEBHOOK_SIGNING_SECRET")
    MUX_RTMP_INGEST_BASE_URL: str = config.get(  # type: ignore[assignment]
        "MUX_RTMP_INGEST_BASE_URL", "rtmps://global-live.mux.com:443"
    )
    MUX_UPLOAD_CORS_ORIGIN: str = config.get("MUX_UPLOAD_CORS_ORIGIN", "*")  # type: ignore[assignment]
    MUX_UPLOAD_TIMEOUT_SECONDS: float = config.get_float("MUX_UPLOAD_TIMEOUT_SECONDS", 300)

    # MongoDB configuration
    MONGO_URL: str = config.get_mongo_url()
    MONGO_DB: str = config.get("MONGO_DB", "livecast")  # type: ignore[assignment]

    # Invite links point here
    FRONTEND_BASE_URL: str = config.get(  # type: ignore[assignment]
        "FRONTEND_BASE_URL", "http://localhost:3000"
    )

    # Stream configuration
    DEFAULT_MAX_HOSTS: int = config.get_int("DEFAULT_MAX_HOSTS", 4, minimum=1)
    INVITE_DEFAULT_EXPIRES_IN_HOURS: int = config.get_int("INVITE_DEFAULT_EXPIRES_IN_HOURS", 24)

    # Recording poller configuration (seconds)
    RECORDING_POLL_INITIAL_DELAY: float = config.get_float("RECORDING_POLL_INITIAL_DELAY", 30)
    RECORDING_POLL_INTERVAL: float = config.get_float("RECORDING_POLL_INTERVAL", 10)
    RECORDING_POLL_MAX_ATTEMPTS: int = config.get_int("RECORDING_POLL_MAX_ATTEMPTS", 60, minimum=1)
    RECORDING_POLL_TICK_TIMEOUT: float = config.get_float("RECORDING_POLL_TICK_TIMEOUT", 15)

    # Egress configuration
    EGRESS_STOP_MAX_RETRIES: int = config.get_int("EGRESS_STOP_MAX_RETRIES", 3, minimum=1)
    EGRESS_STOP_BASE_DELAY: float = config.get_float("EGRESS_STOP_BASE_DELAY", 1.0)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
