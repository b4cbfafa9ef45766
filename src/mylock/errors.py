"""Exception taxonomy shared by the lock and process layers."""

from __future__ import annotations


class MylockError(RuntimeError):
    """Base class for every failure raised by mylock itself."""


class LockValidationError(MylockError, ValueError):
    """Lock name or timeout rejected before any server round trip."""


class LockConnectionError(MylockError):
    """Connection to the lock server could not be established or probed."""


class ProviderError(MylockError):
    """A lock statement failed after the connection was established."""


class ProcessStartError(MylockError):
    """The command could not be started at all."""


class ReleaseError(MylockError):
    """Releasing the lock failed after the guarded command already ran."""
