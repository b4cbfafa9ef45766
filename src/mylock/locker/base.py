"""Lock provider interface and coordinator result types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from mylock.errors import MylockError, ReleaseError
from mylock.executor.base import ExecutionOutcome


class LockProvider(Protocol):
    """Connection-scoped named lock; release must happen on the acquiring connection."""

    def acquire(self, name: str, timeout_seconds: int) -> bool:
        """Wait up to ``timeout_seconds``; ``False`` means the wait elapsed."""

    def release(self, name: str) -> bool:
        """Release ``name``; ``False`` means this connection did not hold it."""

    def close(self) -> None:
        """Drop the connection. Safe to call more than once."""


class CoordinatorStatus(str, Enum):
    """How a guarded run ended from the coordinator's point of view."""

    SUCCESS = "success"
    LOCK_TIMEOUT = "lock_timeout"
    PROVIDER_ERROR = "provider_error"
    VALIDATION_ERROR = "validation_error"


@dataclass(slots=True)
class CoordinatorResult:
    """Outcome of one ``with_lock`` call."""

    status: CoordinatorStatus
    outcome: ExecutionOutcome | None = None
    error: MylockError | None = None
    release_error: ReleaseError | None = None

    @property
    def ok(self) -> bool:
        return self.status is CoordinatorStatus.SUCCESS
