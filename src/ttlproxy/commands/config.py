"""Config commands -- view and modify the persisted configuration.

Provides the ``ttlproxy config`` sub-command group for reading, updating,
and resetting the user's config file (:class:`~ttlproxy.models.GlobalConfig`).
Values saved here are the lowest-precedence layer; ``TTLPROXY_*``
environment variables and ``serve`` flags still override them.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from ttlproxy.exceptions import InvalidUsageError
from ttlproxy.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


def _reject(message: str) -> NoReturn:
    exc = InvalidUsageError(message)
    error(str(exc))
    raise typer.Exit(code=exc.exit_code)


@config_app.command("show")
def config_show(
    effective: bool = typer.Option(
        False, "--effective", help="Include environment variable overrides."
    ),
) -> None:
    """Show the current configuration.

    Example::

        ttlproxy config show
        ttlproxy --json config show --effective
    """
    from ttlproxy.config import config_path, load_global_config, resolve_config
    from ttlproxy.exceptions import ConfigError

    try:
        config = resolve_config() if effective else load_global_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Config file: {config_path()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("path")
def config_path_command() -> None:
    """Print the path of the config file."""
    from ttlproxy.config import config_path
    from ttlproxy.output import get_output

    get_output().print_data(str(config_path()))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'upstream.host')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is validated against
    :class:`~ttlproxy.models.GlobalConfig` (so ``server.port`` must be a
    port number, ``upstream.scheme`` must be ``http`` or ``https``) before
    the file is rewritten.

    Raises:
        typer.Exit: With code 2 if the key path is unknown or the value is
            rejected.

    Example::

        ttlproxy config set upstream.host api.internal
        ttlproxy config set cache.ttl_seconds 120
    """
    from ttlproxy.config import load_global_config, save_global_config
    from ttlproxy.exceptions import ConfigError
    from ttlproxy.models import GlobalConfig

    try:
        config = load_global_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            _reject(f"Invalid config key: {key}")
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        _reject(f"Unknown config key: {key}")

    # Pydantic coerces "8080" -> 8080 and "false" -> False during validation.
    target[final_key] = None if value.lower() in ("null", "none") else value

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        _reject(f"Validation error: {exc}")

    save_global_config(new_config)
    success(f"Set {key} = {value}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Reset configuration to defaults.

    Example::

        ttlproxy config reset --force
    """
    from ttlproxy.config import save_global_config
    from ttlproxy.models import GlobalConfig

    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
