"""Shared utilities for schema validation."""

from datetime import datetime, timezone
from typing import Any


def parse_mongo_datetime(v: Any) -> Any:
    """Normalize datetimes read back from MongoDB.

    Handles MongoDB Extended JSON (`{'$date': '2024-11-01T08:00:00Z'}`) and
    attaches UTC to the naive datetimes the driver returns by default.
    """
    if isinstance(v, dict) and "$date" in v:
        v = datetime.fromisoformat(v["$date"].replace("Z", "+00:00"))
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    # Return as-is and let Pydantic handle validation
    return v


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
