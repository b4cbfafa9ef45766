"""Spawn the guarded command with passthrough stdio and signal relay."""

from __future__ import annotations

import logging
import queue
import signal
import subprocess
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from mylock.errors import ProcessStartError
from mylock.executor.base import CancellationToken, ExecutionOutcome

logger = logging.getLogger(__name__)

DEFAULT_RELAYED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class ProcessRunner:
    """Run one command to completion, relaying termination signals to it.

    Two ways to stop the child are kept apart on purpose: a relayed signal is
    forwarded unchanged and the child decides its own exit status, while
    cancellation kills the child outright and reports ``CANCELLED``.
    """

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 0.05,
        relayed_signals: Sequence[signal.Signals] = DEFAULT_RELAYED_SIGNALS,
    ) -> None:
        self.poll_interval_seconds = poll_interval_seconds
        self.relayed_signals = tuple(relayed_signals)

    def execute(
        self,
        command: Sequence[str],
        *,
        cancellation: CancellationToken | None = None,
    ) -> ExecutionOutcome:
        if not command:
            raise ProcessStartError("Command is required.")
        argv = list(command)

        # The child writes straight to the inherited descriptors.
        sys.stdout.flush()
        sys.stderr.flush()

        with self._relay_signals() as relayed:
            try:
                process = subprocess.Popen(argv)  # noqa: S603
            except FileNotFoundError as error:
                raise ProcessStartError(f"Command not found: {argv[0]}") from error
            except OSError as error:
                raise ProcessStartError(f"Failed to start command {argv[0]}: {error}") from error
            logger.debug("Started %s as pid %d", argv[0], process.pid)

            try:
                return self._watch(process, relayed=relayed, cancellation=cancellation)
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()

    def _watch(
        self,
        process: subprocess.Popen[bytes],
        *,
        relayed: queue.SimpleQueue[int],
        cancellation: CancellationToken | None,
    ) -> ExecutionOutcome:
        while True:
            try:
                returncode = process.wait(timeout=self.poll_interval_seconds)
            except subprocess.TimeoutExpired:
                pass
            else:
                return ExecutionOutcome.from_returncode(returncode)

            try:
                signum = relayed.get_nowait()
            except queue.Empty:
                pass
            else:
                return self._forward_and_wait(process, signum)

            if cancellation is not None and cancellation.cancelled:
                cause = cancellation.cause or "cancelled"
                logger.info("Killing pid %d: %s", process.pid, cause)
                process.kill()
                process.wait()
                return ExecutionOutcome.cancelled(cause)

    def _forward_and_wait(self, process: subprocess.Popen[bytes], signum: int) -> ExecutionOutcome:
        logger.info("Forwarding %s to pid %d", _signal_name(signum), process.pid)
        process.send_signal(signum)
        return ExecutionOutcome.from_returncode(process.wait())

    @contextmanager
    def _relay_signals(self) -> Iterator[queue.SimpleQueue[int]]:
        relayed: queue.SimpleQueue[int] = queue.SimpleQueue()

        def _handler(signum: int, _: object | None) -> None:
            relayed.put(signum)

        originals: dict[signal.Signals, object] = {}
        try:
            for signum in self.relayed_signals:
                originals[signum] = signal.getsignal(signum)
                signal.signal(signum, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Signal relay unavailable outside the main thread")
        try:
            yield relayed
        finally:
            for signum, original in originals.items():
                # None: installed outside Python and cannot be put back as-is.
                restored = signal.SIG_DFL if original is None else original
                try:
                    signal.signal(signum, restored)
                except ValueError:
                    pass


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
