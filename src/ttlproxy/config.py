"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for ttlproxy:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.ttlproxy/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- A single :class:`~ttlproxy.models.GlobalConfig`
  JSON file storing the listen address, upstream target, cache and request
  settings.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, the config file, and defaults into the final
  effective configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ttlproxy.exceptions import ConfigError
from ttlproxy.models import GlobalConfig

_APP_NAME = "ttlproxy"
_CONFIG_FILENAME = "config.json"

# Environment variable -> dotted config path.
ENV_VARS: dict[str, str] = {
    "TTLPROXY_HOST": "server.host",
    "TTLPROXY_PORT": "server.port",
    "TTLPROXY_UPSTREAM_HOST": "upstream.host",
    "TTLPROXY_UPSTREAM_PORT": "upstream.port",
    "TTLPROXY_UPSTREAM_SCHEME": "upstream.scheme",
    "TTLPROXY_CACHE_DIR": "cache.directory",
    "TTLPROXY_TTL": "cache.ttl_seconds",
    "TTLPROXY_TIMEOUT": "request.timeout",
    "TTLPROXY_LOG_LEVEL": "logging.level",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/ttlproxy/`` (default ``~/.config/ttlproxy/``).
    On macOS/Windows: ``~/.ttlproxy/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the default cache directory.

    Unlike the other directory helpers this does not create the directory;
    :meth:`~ttlproxy.cache.FreshnessCache.ensure_store` owns that step so a
    failure surfaces as a cache error rather than an arbitrary ``OSError``.

    On Linux/BSD: ``$XDG_CACHE_HOME/ttlproxy/`` (default ``~/.cache/ttlproxy/``).
    On macOS/Windows: ``~/.ttlproxy/cache/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    return _fallback_base_dir() / "cache"


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/ttlproxy/`` (default ``~/.local/share/ttlproxy/``).
    On macOS/Windows: ``~/.ttlproxy/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_cache_dir(config: GlobalConfig) -> Path:
    """Return the configured cache directory, falling back to :func:`get_cache_dir`."""
    if config.cache.directory:
        return Path(config.cache.directory).expanduser()
    return get_cache_dir()


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~ttlproxy.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    _atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _set_dotted(data: dict[str, Any], dotted: str, value: Any) -> None:
    """Assign *value* at a dotted path (``"server.port"``) inside nested dicts."""
    keys = dotted.split(".")
    target = data
    for k in keys[:-1]:
        target = target.setdefault(k, {})
    target[keys[-1]] = value


def resolve_config(overrides: Optional[dict[str, Any]] = None) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (*overrides*, dotted keys; ``None`` values are ignored)
        2. Environment variables (see :data:`ENV_VARS`)
        3. User config (``~/.config/ttlproxy/config.json``)
        4. Defaults

    Args:
        overrides: Mapping of dotted config paths to values, e.g.
            ``{"server.port": 9000}``.

    Returns:
        The validated effective :class:`~ttlproxy.models.GlobalConfig`.

    Raises:
        ConfigError: If any layer supplies a malformed value.
    """
    # 4 + 3. Defaults filled in by the model, then the file on top.
    data = load_global_config().model_dump(mode="json")

    # 2. Environment variables
    for var, dotted in ENV_VARS.items():
        value = os.environ.get(var)
        if value:
            _set_dotted(data, dotted, value)

    # 1. CLI flags
    for dotted, value in (overrides or {}).items():
        if value is not None:
            _set_dotted(data, dotted, value)

    try:
        return GlobalConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc
