"""Runtime configuration for the lock server connection and lock lifecycle."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field

from sqlalchemy.engine import URL

DEFAULT_MYSQL_PORT = 3306
MIN_PORT = 1
MAX_PORT = 65_535
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class DatabaseSettings:
    """Connection parameters for the MySQL/MariaDB server hosting the locks."""

    host: str = ""
    port: int = DEFAULT_MYSQL_PORT
    user: str = ""
    password: str = ""
    database: str = ""
    driver: str = "mysql+mysqlconnector"
    connect_timeout_seconds: int = 5

    def url(self) -> URL:
        """SQLAlchemy URL; credentials are escaped by URL.create."""

        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )


@dataclass(slots=True)
class RuntimeSettings:
    """Lock lifecycle settings not tied to a single CLI invocation."""

    release_timeout_seconds: float = 5.0
    log_level: str = "WARNING"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from MYLOCK_* environment variables."""

        return cls(
            database=DatabaseSettings(
                host=os.getenv("MYLOCK_HOST", ""),
                port=_env_int("MYLOCK_PORT", DEFAULT_MYSQL_PORT),
                user=os.getenv("MYLOCK_USER", ""),
                password=os.getenv("MYLOCK_PASSWORD", ""),
                database=os.getenv("MYLOCK_DATABASE", ""),
                connect_timeout_seconds=_env_int("MYLOCK_CONNECT_TIMEOUT_SECONDS", 5),
            ),
            runtime=RuntimeSettings(
                release_timeout_seconds=_env_float("MYLOCK_RELEASE_TIMEOUT_SECONDS", 5.0),
                log_level=os.getenv("MYLOCK_LOG_LEVEL", "WARNING").strip().upper(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the first missing or invalid value."""

        database = self.database
        for name, value in (
            ("MYLOCK_HOST", database.host),
            ("MYLOCK_USER", database.user),
            ("MYLOCK_PASSWORD", database.password),
            ("MYLOCK_DATABASE", database.database),
        ):
            if not value:
                raise ValueError(f"{name} environment variable is required.")
        if not MIN_PORT <= database.port <= MAX_PORT:
            raise ValueError(f"MYLOCK_PORT must be between {MIN_PORT} and {MAX_PORT}.")
        if database.connect_timeout_seconds <= 0:
            raise ValueError("MYLOCK_CONNECT_TIMEOUT_SECONDS must be > 0.")
        release_timeout = self.runtime.release_timeout_seconds
        if not math.isfinite(release_timeout) or release_timeout <= 0:
            raise ValueError("MYLOCK_RELEASE_TIMEOUT_SECONDS must be a finite number > 0.")
        if self.runtime.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"MYLOCK_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}.",
            )

    def log_level_number(self) -> int:
        return logging.getLevelName(self.runtime.log_level)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
