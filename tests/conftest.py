"""Shared test fixtures."""

from __future__ import annotations

import itertools
import threading
import time

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

_MYLOCK_ENV = (
    "MYLOCK_HOST",
    "MYLOCK_PORT",
    "MYLOCK_USER",
    "MYLOCK_PASSWORD",
    "MYLOCK_DATABASE",
    "MYLOCK_CONNECT_TIMEOUT_SECONDS",
    "MYLOCK_RELEASE_TIMEOUT_SECONDS",
    "MYLOCK_LOG_LEVEL",
)


class InMemoryLockServer:
    """Named locks shared by every SQLite connection of one engine.

    Mirrors the MySQL semantics the provider relies on: a lock belongs to
    the session that took it, ``GET_LOCK`` blocks up to the timeout, and
    closing a session drops its locks.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._owners: dict[str, int] = {}
        self._session_ids = itertools.count(1)
        self.statements: list[tuple[str, str]] = []

    def new_session(self) -> int:
        return next(self._session_ids)

    def get_lock(self, session_id: int, name: str, timeout: int) -> int:
        self.statements.append(("GET_LOCK", name))
        deadline = time.monotonic() + timeout
        with self._condition:
            while True:
                owner = self._owners.get(name)
                if owner is None or owner == session_id:
                    self._owners[name] = session_id
                    return 1
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return 0
                self._condition.wait(remaining)

    def release_lock(self, session_id: int, name: str) -> int | None:
        self.statements.append(("RELEASE_LOCK", name))
        with self._condition:
            owner = self._owners.get(name)
            if owner is None:
                return None
            if owner != session_id:
                return 0
            del self._owners[name]
            self._condition.notify_all()
            return 1

    def drop_session(self, session_id: int) -> None:
        with self._condition:
            for name in [name for name, owner in self._owners.items() if owner == session_id]:
                del self._owners[name]
            self._condition.notify_all()

    def holder(self, name: str) -> int | None:
        with self._condition:
            return self._owners.get(name)


def build_lock_engine(server: InMemoryLockServer) -> Engine:
    """SQLite engine whose connections expose GET_LOCK/RELEASE_LOCK backed by ``server``."""

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )

    def _on_connect(dbapi_connection, connection_record) -> None:
        session_id = server.new_session()
        connection_record.info["session_id"] = session_id
        dbapi_connection.create_function(
            "GET_LOCK",
            2,
            lambda name, timeout: server.get_lock(session_id, name, timeout),
        )
        dbapi_connection.create_function(
            "RELEASE_LOCK",
            1,
            lambda name: server.release_lock(session_id, name),
        )

    def _on_close(_dbapi_connection, connection_record) -> None:
        session_id = connection_record.info.get("session_id")
        if session_id is not None:
            server.drop_session(session_id)

    event.listen(engine, "connect", _on_connect)
    event.listen(engine, "close", _on_close)
    return engine


@pytest.fixture()
def lock_server() -> InMemoryLockServer:
    return InMemoryLockServer()


@pytest.fixture()
def lock_engine(lock_server: InMemoryLockServer):
    engine = build_lock_engine(lock_server)
    yield engine
    engine.dispose()


@pytest.fixture()
def mylock_env(monkeypatch):
    """Complete, valid MYLOCK_* environment."""

    for name in _MYLOCK_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MYLOCK_HOST", "db.internal")
    monkeypatch.setenv("MYLOCK_USER", "cronuser")
    monkeypatch.setenv("MYLOCK_PASSWORD", "secret")
    monkeypatch.setenv("MYLOCK_DATABASE", "jobs")
    return monkeypatch


@pytest.fixture()
def clean_env(monkeypatch):
    for name in _MYLOCK_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
