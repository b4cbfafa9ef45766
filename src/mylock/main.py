"""CLI entrypoint for mylock."""

from __future__ import annotations

import sys

import rich_click as click

from mylock import __version__
from mylock.controllers import DatabaseOverrides, LockCliController, RunCommand
from mylock.executor import EXIT_INTERNAL_ERROR

click.rich_click.USE_MARKDOWN = True
LOCK_CONTROLLER = LockCliController()

_EPILOG = """\
**Environment:** `MYLOCK_HOST`, `MYLOCK_PORT` (default 3306), `MYLOCK_USER`,
`MYLOCK_PASSWORD`, `MYLOCK_DATABASE`. Command-line options take precedence.

**Exit codes:** 0-127 exit code of the command (128+N when killed by signal N),
200 lock not acquired within `--timeout`, 201 internal error.

**Example:** `mylock --lock-name daily-report --timeout 10 -- ./generate_report.sh`
"""


@click.command(
    context_settings={"allow_interspersed_args": False},
    epilog=_EPILOG,
)
@click.version_option(version=__version__, prog_name="mylock")
@click.option("--lock-name", default=None, help="A unique name for the advisory lock.")
@click.option(
    "--lock-name-from-command",
    is_flag=True,
    default=False,
    help="Derive the lock name from a SHA-256 hash of the command.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.IntRange(min=1),
    required=True,
    help="Max seconds to wait for the lock.",
)
@click.option(
    "--max-runtime",
    "max_runtime_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Kill the command if it runs longer than this many seconds.",
)
@click.option("--host", default=None, help="MySQL host (overrides MYLOCK_HOST).")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65_535),
    default=None,
    help="MySQL port (overrides MYLOCK_PORT).",
)
@click.option("--user", default=None, help="MySQL username (overrides MYLOCK_USER).")
@click.option("--password", default=None, help="MySQL password (overrides MYLOCK_PASSWORD).")
@click.option("--database", default=None, help="MySQL database (overrides MYLOCK_DATABASE).")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Diagnostics level on stderr (overrides MYLOCK_LOG_LEVEL).",
)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def mylock(  # noqa: PLR0913
    ctx: click.Context,
    lock_name: str | None,
    lock_name_from_command: bool,
    timeout_seconds: int,
    max_runtime_seconds: float | None,
    host: str | None,
    port: int | None,
    user: str | None,
    password: str | None,
    database: str | None,
    log_level: str | None,
    command: tuple[str, ...],
) -> None:
    """Acquire a MySQL advisory lock and run a command.

    The lock is taken with `GET_LOCK()`, the command runs with stdin, stdout and
    stderr passed through, SIGINT and SIGTERM are forwarded to it, and the lock
    is released with `RELEASE_LOCK()` however the command ends.
    """

    if bool(lock_name) == lock_name_from_command:
        raise click.UsageError("Pass exactly one of --lock-name or --lock-name-from-command.")

    result = LOCK_CONTROLLER.run(
        RunCommand(
            command=command,
            timeout_seconds=timeout_seconds,
            lock_name=lock_name,
            lock_name_from_command=lock_name_from_command,
            max_runtime_seconds=max_runtime_seconds,
            log_level=log_level,
            overrides=DatabaseOverrides(
                host=host,
                port=port,
                user=user,
                password=password,
                database=database,
            ),
        ),
    )
    _emit_lines(result.lines)
    ctx.exit(result.exit_code)


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code; usage errors map to 201."""

    try:
        return mylock.main(args=argv, prog_name="mylock", standalone_mode=False) or 0
    except click.ClickException as error:
        error.show()
        return EXIT_INTERNAL_ERROR
    except click.Abort:
        click.echo("Aborted!", err=True)
        return EXIT_INTERNAL_ERROR


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line, err=True)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
