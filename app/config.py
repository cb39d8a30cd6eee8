"""
Centralized configuration management.

Values are layered, later sources overriding earlier ones:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger

_TRUE_VALUES = {"1", "true", "yes", "on"}


class EnvironConfig:
    """
    Singleton holding the merged environment, with typed accessors that fall
    back to a default (and log) when a value is missing or malformed.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._values: dict[str, str | None] = {}
            self._load()
            EnvironConfig._initialized = True

    def _load(self):
        root = Path(__file__).parent.parent

        for name in ("env.example", "env.local"):
            path = root / name
            if path.exists():
                self._values.update(dotenv_values(path))
                logger.info("Loaded environment variables from {}", path)

        self._values.update(os.environ)

    def reload(self):
        """Re-read env files and the process environment."""
        self._values.clear()
        self._load()
        logger.info("Configuration reloaded")

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self._values.get(key)
        if value is None:
            return default
        value = value.strip()
        return value if value else default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.lower() in _TRUE_VALUES

    def get_int(
        self,
        key: str,
        default: int,
        minimum: int | None = None,
        maximum: int | None = None,
    ) -> int:
        """Integer value of `key`, or `default` when unset, invalid or out of range."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default

        if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
            logger.warning(
                "{} value {} is out of range ({}-{}), defaulting to {}",
                key,
                value,
                minimum,
                maximum,
                default,
            )
            return default
        return value

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default

    def get_list(self, key: str, default: str = "") -> list[str]:
        """Comma separated value as a list, blanks dropped."""
        raw = self.get(key, default) or ""
        return [item.strip() for item in raw.split(",") if item.strip()]

    def get_mongo_url(self) -> str:
        return self.get("MONGO_URL", "mongodb://localhost:27017")  # type: ignore[return-value]

    def get_mongo_max_pool_size(self) -> int:
        return self.get_int("MONGO_MAX_POOL_SIZE", 5, minimum=1, maximum=100)


config = EnvironConfig()
