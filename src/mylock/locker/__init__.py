"""Advisory lock provider and the coordinator that scopes it."""

from mylock.locker.base import CoordinatorResult, CoordinatorStatus, LockProvider
from mylock.locker.coordinator import ExecutionCoordinator
from mylock.locker.naming import lock_name_from_command, validate_lock_name
from mylock.locker.provider import MySqlLockProvider

__all__ = [
    "CoordinatorResult",
    "CoordinatorStatus",
    "ExecutionCoordinator",
    "LockProvider",
    "MySqlLockProvider",
    "lock_name_from_command",
    "validate_lock_name",
]
