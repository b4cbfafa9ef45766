"""Lock name validation and derivation."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

from mylock.errors import LockValidationError

MAX_LOCK_NAME_LENGTH = 64
DERIVED_LOCK_NAME_PREFIX = "mylock-"
_LOCK_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+")


def validate_lock_name(name: str) -> str:
    """Return ``name`` unchanged or raise if the server could misread it.

    Names reach ``GET_LOCK`` as bound parameters, but they also show up in
    ``performance_schema`` and in logs, so only a small alphabet is allowed.
    """

    if not isinstance(name, str) or not name:
        raise LockValidationError("Lock name is required.")
    if len(name) > MAX_LOCK_NAME_LENGTH:
        raise LockValidationError(
            f"Lock name too long (max {MAX_LOCK_NAME_LENGTH} characters).",
        )
    if _LOCK_NAME_PATTERN.fullmatch(name) is None:
        raise LockValidationError(
            "Lock name contains invalid characters "
            "(use only alphanumeric, underscore, hyphen, dot).",
        )
    if ".." in name:
        raise LockValidationError("Lock name contains consecutive dots.")
    if "--" in name:
        raise LockValidationError("Lock name contains consecutive hyphens.")
    return name


def validate_timeout_seconds(timeout_seconds: int) -> int:
    # bool is an int subclass; ``--timeout true`` must not mean one second.
    if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, int):
        raise LockValidationError("Lock timeout must be an integer number of seconds.")
    if timeout_seconds <= 0:
        raise LockValidationError("Lock timeout must be positive.")
    return timeout_seconds


def lock_name_from_command(command: Sequence[str]) -> str:
    """Deterministic lock name for a command line.

    Parts are joined with NUL so ``["echo", "a b"]`` and ``["echo a", "b"]``
    hash differently.
    """

    digest = hashlib.sha256("\x00".join(command).encode("utf-8")).hexdigest()
    return (DERIVED_LOCK_NAME_PREFIX + digest)[:MAX_LOCK_NAME_LENGTH]
