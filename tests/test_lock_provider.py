from __future__ import annotations

import threading
import time

import allure
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import NullPool

from mylock.config import DatabaseSettings
from mylock.errors import LockConnectionError, LockValidationError, ProviderError
from mylock.locker.provider import MySqlLockProvider

pytestmark = [
    allure.epic("Advisory Lock"),
    allure.feature("Lock Provider"),
]


def _sqlite_engine(url: str = "sqlite://"):
    # The provider opens its connection on a probe thread.
    return create_engine(url, connect_args={"check_same_thread": False}, poolclass=NullPool)


def test_acquire_then_release_round_trip(lock_engine, lock_server) -> None:
    with MySqlLockProvider.from_engine(lock_engine) as provider:
        assert provider.acquire("job-a", 1) is True
        assert lock_server.holder("job-a") is not None
        assert provider.release("job-a") is True

    assert lock_server.holder("job-a") is None


def test_acquire_returns_false_when_wait_elapses(lock_engine) -> None:
    holder = MySqlLockProvider.from_engine(lock_engine)
    contender = MySqlLockProvider.from_engine(lock_engine)
    try:
        assert holder.acquire("job-a", 1) is True

        started = time.monotonic()
        assert contender.acquire("job-a", 1) is False
        assert time.monotonic() - started >= 0.9
    finally:
        holder.close()
        contender.close()


def test_acquire_waits_for_release_by_other_session(lock_engine) -> None:
    holder = MySqlLockProvider.from_engine(lock_engine)
    contender = MySqlLockProvider.from_engine(lock_engine)
    try:
        assert holder.acquire("job-a", 1) is True
        timer = threading.Timer(0.3, holder.release, args=("job-a",))
        timer.start()

        assert contender.acquire("job-a", 5) is True
        timer.join()
    finally:
        holder.close()
        contender.close()


def test_release_of_unheld_lock_is_false_not_error(lock_engine) -> None:
    holder = MySqlLockProvider.from_engine(lock_engine)
    other = MySqlLockProvider.from_engine(lock_engine)
    try:
        assert holder.release("never-taken") is False

        holder.acquire("job-a", 1)
        assert other.release("job-a") is False
    finally:
        holder.close()
        other.close()


def test_closing_connection_drops_held_locks(lock_engine, lock_server) -> None:
    provider = MySqlLockProvider.from_engine(lock_engine)
    provider.acquire("job-a", 1)

    provider.close()

    assert lock_server.holder("job-a") is None


def test_close_is_idempotent_and_blocks_further_use(lock_engine) -> None:
    provider = MySqlLockProvider.from_engine(lock_engine)

    provider.close()
    provider.close()

    assert provider.closed
    with pytest.raises(ProviderError, match="closed"):
        provider.acquire("job-a", 1)
    with pytest.raises(ProviderError, match="closed"):
        provider.release("job-a")


@pytest.mark.parametrize("name", ["", "a;b", "a'b", "a`b", "a\x00b", "a\nb"])
def test_invalid_names_never_reach_the_server(lock_engine, lock_server, name: str) -> None:
    with MySqlLockProvider.from_engine(lock_engine) as provider:
        with pytest.raises(LockValidationError):
            provider.acquire(name, 1)
        with pytest.raises(LockValidationError):
            provider.release(name)

    assert lock_server.statements == []


def test_invalid_timeout_never_reaches_the_server(lock_engine, lock_server) -> None:
    with MySqlLockProvider.from_engine(lock_engine) as provider:
        with pytest.raises(LockValidationError):
            provider.acquire("job-a", 0)

    assert lock_server.statements == []


def test_statement_failure_is_provider_error() -> None:
    # Plain SQLite: GET_LOCK does not exist, so the statement fails mid-session.
    engine = _sqlite_engine()
    try:
        with MySqlLockProvider.from_engine(engine) as provider:
            with pytest.raises(ProviderError, match="Failed to acquire lock 'job-a'"):
                provider.acquire("job-a", 1)
            with pytest.raises(ProviderError, match="Failed to release lock 'job-a'"):
                provider.release("job-a")
    finally:
        engine.dispose()


def test_null_get_lock_result_is_provider_error() -> None:
    engine = _sqlite_engine()

    def _on_connect(dbapi_connection, _) -> None:
        dbapi_connection.create_function("GET_LOCK", 2, lambda name, timeout: None)

    event.listen(engine, "connect", _on_connect)
    try:
        with MySqlLockProvider.from_engine(engine) as provider:
            with pytest.raises(ProviderError, match="unexpected value None"):
                provider.acquire("job-a", 1)
    finally:
        engine.dispose()


def test_connection_failure_is_fatal(tmp_path) -> None:
    engine = _sqlite_engine(f"sqlite:///{tmp_path / 'missing' / 'locks.db'}")

    with pytest.raises(LockConnectionError, match="Failed to ping database"):
        MySqlLockProvider.from_engine(engine)


def test_open_unreachable_server_raises_connection_error() -> None:
    settings = DatabaseSettings(
        host="127.0.0.1",
        port=1,
        user="nobody",
        password="nothing",
        database="none",
        connect_timeout_seconds=1,
    )

    with pytest.raises(LockConnectionError):
        MySqlLockProvider.open(settings)


def _block_statements(engine, fragment: str) -> tuple[threading.Event, threading.Event]:
    """Hold statements containing ``fragment``; returns (reached, unblock) events."""

    reached = threading.Event()
    unblock = threading.Event()

    def _before_execute(_conn, _cursor, statement, _parameters, _context, _executemany) -> None:
        if fragment in statement:
            reached.set()
            unblock.wait(10)

    event.listen(engine, "before_cursor_execute", _before_execute)
    return reached, unblock


def test_unanswered_probe_fails_within_bound(lock_engine) -> None:
    _, unblock = _block_statements(lock_engine, "SELECT 1")
    try:
        started = time.monotonic()
        with pytest.raises(LockConnectionError, match="no answer within 0.2 seconds"):
            MySqlLockProvider.from_engine(lock_engine, probe_timeout_seconds=0.2)
        assert time.monotonic() - started < 2
    finally:
        unblock.set()


def test_close_leaves_busy_connection_to_its_statement(lock_engine, lock_server) -> None:
    provider = MySqlLockProvider.from_engine(lock_engine)
    assert provider.acquire("job-a", 1)
    session = lock_server.holder("job-a")
    reached, unblock = _block_statements(lock_engine, "RELEASE_LOCK")
    released: list[bool] = []
    releaser = threading.Thread(target=lambda: released.append(provider.release("job-a")))
    releaser.start()
    try:
        assert reached.wait(5)
        provider.close()

        assert provider.closed
        # The session is still open, so its lock is untouched until the release runs.
        assert lock_server.holder("job-a") == session
    finally:
        unblock.set()
        releaser.join(5)

    assert released == [True]
    assert lock_server.holder("job-a") is None
