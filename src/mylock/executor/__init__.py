"""Child process execution for the guarded command."""

from mylock.executor.base import (
    EXIT_INTERNAL_ERROR,
    EXIT_LOCK_TIMEOUT,
    CancellationToken,
    ExecutionOutcome,
    OutcomeKind,
)
from mylock.executor.runner import ProcessRunner

__all__ = [
    "EXIT_INTERNAL_ERROR",
    "EXIT_LOCK_TIMEOUT",
    "CancellationToken",
    "ExecutionOutcome",
    "OutcomeKind",
    "ProcessRunner",
]
