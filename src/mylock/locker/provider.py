"""MySQL ``GET_LOCK``/``RELEASE_LOCK`` provider over one SQLAlchemy connection."""

from __future__ import annotations

import logging
import threading
from types import TracebackType

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from mylock.config import DatabaseSettings
from mylock.errors import LockConnectionError, ProviderError
from mylock.locker.naming import validate_lock_name, validate_timeout_seconds

logger = logging.getLogger(__name__)

_GET_LOCK = text("SELECT GET_LOCK(:name, :timeout)")
_RELEASE_LOCK = text("SELECT RELEASE_LOCK(:name)")
_PING = text("SELECT 1")

DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0


def build_mysql_engine(settings: DatabaseSettings) -> Engine:
    """Build an engine that never pools: a lock belongs to exactly one session."""

    return create_engine(
        settings.url(),
        connect_args={"connection_timeout": settings.connect_timeout_seconds},
        poolclass=NullPool,
    )


class MySqlLockProvider:
    """Owns one live connection and the advisory locks held by its session.

    Instances are not shared between concurrent invocations: the server
    ties each lock to the session that took it, so release has to go
    through the same connection as acquire.
    """

    def __init__(self, engine: Engine, connection: Connection, *, owns_engine: bool) -> None:
        self._engine = engine
        self._connection: Connection | None = connection
        self._owns_engine = owns_engine
        # Held while a statement runs; the connection is not thread-safe.
        self._busy = threading.Lock()

    @classmethod
    def open(cls, settings: DatabaseSettings) -> MySqlLockProvider:
        """Connect and probe the server; any failure here is fatal."""

        try:
            engine = build_mysql_engine(settings)
        except (SQLAlchemyError, ImportError) as error:
            raise LockConnectionError(f"Failed to configure database engine: {error}") from error
        return cls._connect(
            engine,
            owns_engine=True,
            probe_timeout_seconds=settings.connect_timeout_seconds,
        )

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        *,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> MySqlLockProvider:
        """Connect through a caller-built engine; the caller keeps ownership of it."""

        return cls._connect(engine, owns_engine=False, probe_timeout_seconds=probe_timeout_seconds)

    @classmethod
    def _connect(
        cls,
        engine: Engine,
        *,
        owns_engine: bool,
        probe_timeout_seconds: float,
    ) -> MySqlLockProvider:
        # The driver only bounds the handshake, so connect and ping run in a
        # daemon thread and the caller waits at most probe_timeout_seconds.
        state: dict[str, object] = {}
        handoff = threading.Lock()

        def _probe() -> None:
            connection: Connection | None = None
            try:
                connection = engine.connect()
                # Lock functions are not transactional; keep the session out of
                # implicit transactions so nothing else holds server state.
                connection.execution_options(isolation_level="AUTOCOMMIT")
                connection.execute(_PING).scalar()
            except Exception as error:  # re-raised on the calling thread
                if connection is not None:
                    connection.close()
                state["error"] = error
                return
            with handoff:
                if state.get("abandoned"):
                    connection.close()
                else:
                    state["connection"] = connection

        worker = threading.Thread(target=_probe, name="mylock-probe", daemon=True)
        worker.start()
        worker.join(probe_timeout_seconds)

        with handoff:
            connection = state.get("connection")
            error = state.get("error")
            if connection is None and error is None:
                state["abandoned"] = True

        if not isinstance(connection, Connection):
            if owns_engine:
                engine.dispose()
            if isinstance(error, SQLAlchemyError):
                raise LockConnectionError(f"Failed to ping database: {error}") from error
            if isinstance(error, Exception):
                raise error
            raise LockConnectionError(
                f"Failed to ping database: no answer within {probe_timeout_seconds:g} seconds.",
            )

        logger.debug("Connected to lock server %s", engine.url.render_as_string())
        return cls(engine, connection, owns_engine=owns_engine)

    @property
    def closed(self) -> bool:
        return self._connection is None

    def acquire(self, name: str, timeout_seconds: int) -> bool:
        validate_lock_name(name)
        validate_timeout_seconds(timeout_seconds)
        connection = self._require_connection()
        logger.debug("GET_LOCK(%r, %d)", name, timeout_seconds)
        try:
            with self._busy:
                result = connection.execute(
                    _GET_LOCK,
                    {"name": name, "timeout": timeout_seconds},
                ).scalar()
        except SQLAlchemyError as error:
            raise ProviderError(f"Failed to acquire lock {name!r}: {error}") from error

        if result == 1:
            return True
        if result == 0:
            return False
        # NULL: the server hit an error (killed thread, out of memory).
        raise ProviderError(f"GET_LOCK returned unexpected value {result!r} for lock {name!r}.")

    def release(self, name: str) -> bool:
        validate_lock_name(name)
        connection = self._require_connection()
        logger.debug("RELEASE_LOCK(%r)", name)
        try:
            with self._busy:
                result = connection.execute(_RELEASE_LOCK, {"name": name}).scalar()
        except SQLAlchemyError as error:
            raise ProviderError(f"Failed to release lock {name!r}: {error}") from error
        # 0: held by another session, NULL: no such lock. Neither is a fault.
        return result == 1

    def close(self) -> None:
        connection = self._connection
        if connection is None:
            return
        self._connection = None
        if not self._busy.acquire(blocking=False):
            # A statement is still running on another thread (an overdue
            # release). The session ends with the process and the server
            # drops its locks then.
            logger.warning("Lock server connection busy at close; leaving it to process exit")
            if self._owns_engine:
                self._engine.dispose()
            return
        try:
            # Closing the session drops every lock it still holds.
            connection.close()
        except SQLAlchemyError as error:
            logger.warning("Failed to close lock server connection: %s", error)
        finally:
            self._busy.release()
            if self._owns_engine:
                self._engine.dispose()

    def __enter__(self) -> MySqlLockProvider:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise ProviderError("Lock provider is closed.")
        return self._connection
