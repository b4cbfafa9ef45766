"""Acquire, run, always release."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable

from mylock.errors import LockValidationError, ProviderError, ReleaseError
from mylock.executor.base import ExecutionOutcome
from mylock.locker.base import CoordinatorResult, CoordinatorStatus, LockProvider
from mylock.locker.naming import validate_lock_name, validate_timeout_seconds

logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Scoped acquisition of one named lock around a body.

    The provider is owned by this coordinator for the duration of a call and
    must not be shared with a concurrent invocation.
    """

    def __init__(self, provider: LockProvider, *, release_timeout_seconds: float = 5.0) -> None:
        if not math.isfinite(release_timeout_seconds) or release_timeout_seconds <= 0:
            raise ValueError("release_timeout_seconds must be a finite number > 0")
        self.provider = provider
        self.release_timeout_seconds = release_timeout_seconds

    def with_lock(
        self,
        name: str,
        timeout_seconds: int,
        body: Callable[[], ExecutionOutcome],
    ) -> CoordinatorResult:
        """Run ``body`` while holding ``name``.

        Exceptions raised by ``body`` propagate after the release attempt.
        A failed release is logged and attached to the result; it never
        replaces the body's own outcome or exception.
        """

        try:
            validate_lock_name(name)
            validate_timeout_seconds(timeout_seconds)
        except LockValidationError as error:
            return CoordinatorResult(status=CoordinatorStatus.VALIDATION_ERROR, error=error)

        try:
            acquired = self.provider.acquire(name, timeout_seconds)
        except ProviderError as error:
            return CoordinatorResult(status=CoordinatorStatus.PROVIDER_ERROR, error=error)

        if not acquired:
            logger.info("Lock %r not acquired within %d seconds", name, timeout_seconds)
            return CoordinatorResult(status=CoordinatorStatus.LOCK_TIMEOUT)

        logger.info("Acquired lock %r", name)
        try:
            outcome = body()
        finally:
            release_error = self._release(name)
        return CoordinatorResult(
            status=CoordinatorStatus.SUCCESS,
            outcome=outcome,
            release_error=release_error,
        )

    def _release(self, name: str) -> ReleaseError | None:
        # Separate daemon thread with its own deadline: independent of whatever
        # stopped the body, and a hung server cannot keep the process alive.
        outcome: dict[str, object] = {}

        def _run() -> None:
            try:
                outcome["released"] = self.provider.release(name)
            except (ProviderError, LockValidationError) as cause:
                outcome["error"] = cause

        worker = threading.Thread(target=_run, name="mylock-release", daemon=True)
        worker.start()
        worker.join(self.release_timeout_seconds)

        if worker.is_alive():
            error = ReleaseError(
                f"Releasing lock {name!r} did not finish within "
                f"{self.release_timeout_seconds:g} seconds.",
            )
        elif "error" in outcome:
            error = ReleaseError(f"Failed to release lock {name!r}: {outcome['error']}")
            error.__cause__ = outcome["error"]  # type: ignore[assignment]
        elif "released" not in outcome:
            error = ReleaseError(f"Releasing lock {name!r} ended without a result.")
        else:
            if outcome["released"]:
                logger.info("Released lock %r", name)
            else:
                logger.info("Lock %r was not held at release time", name)
            return None

        logger.warning("%s", error)
        return error
