"""Typer application and CLI entry point for ttlproxy.

This module wires together the top-level Typer application and registers
the built-in commands (``serve``, ``cache``, ``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled :class:`~ttlproxy.exceptions.TtlProxyError`
instances exit with the error's code; anything else is written to a crash
log under the data directory.

See Also:
    :mod:`ttlproxy.config`: configuration resolution.
    :mod:`ttlproxy.output`: output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import sys
import traceback
from datetime import datetime
from typing import Optional

import typer

from ttlproxy import __version__
from ttlproxy.commands.cache import cache_app
from ttlproxy.commands.config import config_app
from ttlproxy.commands.serve import serve_command
from ttlproxy.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="ttlproxy",
    help="Caching HTTP proxy with an on-disk TTL response cache.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

app.command("serve")(serve_command)
app.add_typer(cache_app, name="cache", help="Inspect and clear the response cache.")
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"ttlproxy {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and debug logging."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~ttlproxy.output.OutputManager` from
    CLI flags.
    """
    from ttlproxy.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))


def _write_crash_log() -> str:
    """Write the current traceback to disk and return the log file path."""
    from ttlproxy.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point invoked by the ``ttlproxy`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app(args=argv)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from ttlproxy.exceptions import TtlProxyError
        from ttlproxy.output import error

        if isinstance(exc, TtlProxyError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)


if __name__ == "__main__":
    main()
