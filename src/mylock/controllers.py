"""Controller turning CLI input into a guarded run and an exit code."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from mylock.config import DatabaseSettings, Settings
from mylock.errors import LockConnectionError, ProcessStartError
from mylock.executor import (
    EXIT_INTERNAL_ERROR,
    EXIT_LOCK_TIMEOUT,
    CancellationToken,
    ExecutionOutcome,
    OutcomeKind,
    ProcessRunner,
)
from mylock.locker import (
    CoordinatorResult,
    CoordinatorStatus,
    ExecutionCoordinator,
    LockProvider,
    MySqlLockProvider,
)
from mylock.locker.naming import (
    lock_name_from_command,
    validate_lock_name,
    validate_timeout_seconds,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DatabaseOverrides:
    """Connection values passed on the command line; None keeps the env value."""

    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None


@dataclass(slots=True)
class RunCommand:
    """CLI input for one guarded command run."""

    command: tuple[str, ...]
    timeout_seconds: int
    lock_name: str | None = None
    lock_name_from_command: bool = False
    max_runtime_seconds: float | None = None
    log_level: str | None = None
    overrides: DatabaseOverrides = field(default_factory=DatabaseOverrides)


@dataclass(slots=True)
class RunResult:
    """Exit code plus the messages to print on stderr."""

    exit_code: int
    lines: list[str] = field(default_factory=list)


class LockCliController:
    """Resolve settings and lock name, then run the command under the lock."""

    def __init__(
        self,
        *,
        provider_factory: Callable[[DatabaseSettings], LockProvider] = MySqlLockProvider.open,
        runner: ProcessRunner | None = None,
    ) -> None:
        self.provider_factory = provider_factory
        self.runner = runner or ProcessRunner()

    def run(self, command: RunCommand) -> RunResult:
        try:
            settings = _apply_overrides(Settings.from_env(), command.overrides)
            if command.log_level:
                settings.runtime.log_level = command.log_level.upper()
            settings.validate()
        except ValueError as error:
            return _failure(f"Error: {error}")
        _configure_logging(settings)

        if not command.command:
            return _failure("Error: Command is required.")
        try:
            lock_name = _resolve_lock_name(command)
        except ValueError as error:
            return _failure(f"Error: {error}")
        logger.debug("Running %s under lock %r", command.command[0], lock_name)

        try:
            provider = self.provider_factory(settings.database)
        except LockConnectionError as error:
            return _failure(f"Failed to connect to MySQL: {error}")

        try:
            coordinator = ExecutionCoordinator(
                provider,
                release_timeout_seconds=settings.runtime.release_timeout_seconds,
            )
            result = coordinator.with_lock(
                lock_name,
                command.timeout_seconds,
                lambda: self._execute(command),
            )
        except ProcessStartError as error:
            return _failure(f"Error: {error}")
        finally:
            provider.close()

        return _result_to_exit(result, lock_name=lock_name, timeout_seconds=command.timeout_seconds)

    def _execute(self, command: RunCommand) -> ExecutionOutcome:
        # The runtime budget starts once the lock is held, not while waiting for it.
        cancellation = (
            CancellationToken(deadline_seconds=command.max_runtime_seconds)
            if command.max_runtime_seconds is not None
            else None
        )
        return self.runner.execute(command.command, cancellation=cancellation)


def _apply_overrides(settings: Settings, overrides: DatabaseOverrides) -> Settings:
    values = {
        name: value
        for name in ("host", "port", "user", "password", "database")
        if (value := getattr(overrides, name)) is not None
    }
    if not values:
        return settings
    return replace(settings, database=replace(settings.database, **values))


def _resolve_lock_name(command: RunCommand) -> str:
    if command.lock_name and command.lock_name_from_command:
        raise ValueError("Use either --lock-name or --lock-name-from-command, not both.")
    if command.lock_name_from_command:
        lock_name = lock_name_from_command(command.command)
    elif command.lock_name:
        lock_name = command.lock_name
    else:
        raise ValueError("Either --lock-name or --lock-name-from-command is required.")
    # Reject bad input before a connection is even opened.
    validate_timeout_seconds(command.timeout_seconds)
    return validate_lock_name(lock_name)


def _result_to_exit(result: CoordinatorResult, *, lock_name: str, timeout_seconds: int) -> RunResult:
    if result.status is CoordinatorStatus.LOCK_TIMEOUT:
        return RunResult(
            exit_code=EXIT_LOCK_TIMEOUT,
            lines=[f"Failed to acquire lock '{lock_name}' within {timeout_seconds} seconds"],
        )
    if result.status is not CoordinatorStatus.SUCCESS or result.outcome is None:
        return _failure(f"Error: {result.error}")

    outcome = result.outcome
    if outcome.kind is OutcomeKind.CANCELLED:
        return _failure(f"Error: command cancelled: {outcome.cancel_cause}")
    return RunResult(exit_code=outcome.exit_code)


def _failure(line: str) -> RunResult:
    return RunResult(exit_code=EXIT_INTERNAL_ERROR, lines=[line])


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level_number(),
        stream=sys.stderr,
        format="mylock: %(levelname)s %(message)s",
    )
