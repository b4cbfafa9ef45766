"""Execution outcome model and cancellation token for the process runner."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum

EXIT_LOCK_TIMEOUT = 200
EXIT_INTERNAL_ERROR = 201
SIGNAL_EXIT_BASE = 128


class OutcomeKind(str, Enum):
    """Terminal states of a child process."""

    EXITED = "exited"
    SIGNALED = "signaled"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """How the child terminated.

    A command that could not be started has no outcome; the runner raises
    ``ProcessStartError`` instead so a start failure never looks like a
    program exit code.
    """

    kind: OutcomeKind
    returncode: int | None = None
    signal_number: int | None = None
    cancel_cause: str | None = None

    @classmethod
    def exited(cls, returncode: int) -> ExecutionOutcome:
        return cls(kind=OutcomeKind.EXITED, returncode=returncode)

    @classmethod
    def signaled(cls, signal_number: int) -> ExecutionOutcome:
        return cls(kind=OutcomeKind.SIGNALED, signal_number=signal_number)

    @classmethod
    def cancelled(cls, cause: str) -> ExecutionOutcome:
        return cls(kind=OutcomeKind.CANCELLED, cancel_cause=cause)

    @classmethod
    def from_returncode(cls, returncode: int) -> ExecutionOutcome:
        """Map ``Popen.returncode`` (negative for signals on POSIX)."""

        if returncode < 0:
            return cls.signaled(-returncode)
        return cls.exited(returncode)

    @property
    def exit_code(self) -> int:
        """Portable shell exit status for this outcome."""

        if self.kind is OutcomeKind.EXITED and self.returncode is not None:
            return self.returncode
        if self.kind is OutcomeKind.SIGNALED and self.signal_number is not None:
            return SIGNAL_EXIT_BASE + self.signal_number
        return EXIT_INTERNAL_ERROR


class CancellationToken:
    """Thread-safe stop request, optionally armed with a deadline."""

    def __init__(self, *, deadline_seconds: float | None = None) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._cause: str | None = None
        self._deadline_seconds = deadline_seconds
        self._deadline: float | None = None
        if deadline_seconds is not None:
            if deadline_seconds <= 0:
                raise ValueError("deadline_seconds must be > 0")
            self._deadline = time.monotonic() + deadline_seconds

    def cancel(self, cause: str) -> bool:
        """Request cancellation; the first cause wins. Returns False if already cancelled."""

        with self._lock:
            if self._event.is_set():
                return False
            self._cause = cause
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel(f"deadline of {self._deadline_seconds:g} seconds exceeded")
            return True
        return False

    @property
    def cause(self) -> str | None:
        with self._lock:
            return self._cause
