from ulid import ULID


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_stream_id() -> str:
    return new_ulid("st_")


def new_host_id() -> str:
    return new_ulid("ho_")


def new_invite_id() -> str:
    return new_ulid("iv_")


def new_room_name() -> str:
    return new_ulid("stream-")
