"""Tests for ttlproxy.config: XDG paths, atomic writes, and precedence."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from ttlproxy.config import (
    _atomic_write,
    config_path,
    get_cache_dir,
    get_config_dir,
    get_data_dir,
    load_global_config,
    resolve_cache_dir,
    resolve_config,
    save_global_config,
)
from ttlproxy.exceptions import ConfigError
from ttlproxy.exit_codes import EXIT_CONFIG_ERROR
from ttlproxy.models import CacheConfig, GlobalConfig, ServerConfig, UpstreamConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_json(path: Path, data: Any) -> None:
    """Write a dict as JSON to *path*, creating parent dirs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# XDG path resolution
# ---------------------------------------------------------------------------


class TestXDGPathsLinux:
    """XDG paths on Linux (the default XDG platform)."""

    def test_config_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_config_dir()
        assert result == tmp_path / ".config" / "ttlproxy"
        assert result.is_dir()

    def test_config_dir_xdg_custom(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        custom = tmp_path / "custom_config"
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(custom))

        assert get_config_dir() == custom / "ttlproxy"

    def test_cache_dir_not_created(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg_cache"))

        result = get_cache_dir()
        assert result == tmp_path / "xdg_cache" / "ttlproxy"
        assert not result.exists()

    def test_cache_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_cache_dir() == tmp_path / ".cache" / "ttlproxy"

    def test_data_dir_xdg_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        result = get_data_dir()
        assert result == tmp_path / ".local" / "share" / "ttlproxy"
        assert result.is_dir()


class TestXDGPathsFallback:
    """Non-XDG platforms (macOS, Windows) use ~/.ttlproxy/."""

    def test_config_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_config_dir() == tmp_path / ".ttlproxy"

    def test_cache_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_cache_dir() == tmp_path / ".ttlproxy" / "cache"

    def test_data_dir_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))

        assert get_data_dir() == tmp_path / ".ttlproxy" / "logs"


class TestResolveCacheDir:
    def test_configured_directory_wins(self, isolated_config: Path) -> None:
        config = GlobalConfig(cache=CacheConfig(directory=str(isolated_config / "mine")))
        assert resolve_cache_dir(config) == isolated_config / "mine"

    def test_falls_back_to_xdg_cache(self, isolated_config: Path) -> None:
        assert resolve_cache_dir(GlobalConfig()) == isolated_config / "cache" / "ttlproxy"


# ---------------------------------------------------------------------------
# Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_creates_file_with_content(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        _atomic_write(target, "hello world")
        assert target.read_text(encoding="utf-8") == "hello world"

    def test_overwrites_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("old content", encoding="utf-8")
        _atomic_write(target, "new content")
        assert target.read_text(encoding="utf-8") == "new content"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "test.txt"
        _atomic_write(target, "deep write")
        assert target.read_text(encoding="utf-8") == "deep write"

    def test_no_temp_files_left_on_error(self, tmp_path: Path) -> None:
        target = tmp_path / "test.txt"
        target.write_text("original", encoding="utf-8")
        with patch("ttlproxy.config.os.fsync", side_effect=OSError("disk error")):
            with pytest.raises(OSError, match="disk error"):
                _atomic_write(target, "will fail")
        assert [f.name for f in tmp_path.iterdir()] == ["test.txt"]
        assert target.read_text(encoding="utf-8") == "original"


# ---------------------------------------------------------------------------
# Global config file
# ---------------------------------------------------------------------------


class TestGlobalConfig:
    def test_load_returns_defaults_when_missing(self, isolated_config: Path) -> None:
        cfg = load_global_config()
        assert cfg == GlobalConfig()
        assert cfg.server.port == 8080
        assert cfg.upstream.base_url == "https://target-server.com"
        assert cfg.cache.ttl_seconds == 60

    def test_save_and_load_roundtrip(self, isolated_config: Path) -> None:
        original = GlobalConfig(
            server=ServerConfig(port=9000),
            upstream=UpstreamConfig(host="api.internal", port=8000, scheme="http"),
            cache=CacheConfig(ttl_seconds=5, directory="/var/cache/proxy"),
        )
        save_global_config(original)
        assert load_global_config() == original

    def test_config_file_location(self, isolated_config: Path) -> None:
        save_global_config(GlobalConfig())
        path = isolated_config / "config" / "ttlproxy" / "config.json"
        assert config_path() == path
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["upstream"]["host"] == "target-server.com"

    def test_load_invalid_json_raises_config_error(self, isolated_config: Path) -> None:
        config_path().write_text("{invalid json!!!", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid config"):
            load_global_config()

    def test_load_invalid_schema_raises_config_error(self, isolated_config: Path) -> None:
        _write_json(config_path(), {"server": {"port": 0}})
        with pytest.raises(ConfigError, match="Invalid config") as exc_info:
            load_global_config()
        assert exc_info.value.exit_code == EXIT_CONFIG_ERROR


# ---------------------------------------------------------------------------
# Precedence resolution
# ---------------------------------------------------------------------------


class TestResolveConfig:
    def test_defaults(self, isolated_config: Path) -> None:
        assert resolve_config() == GlobalConfig()

    def test_file_overrides_defaults(self, isolated_config: Path) -> None:
        _write_json(config_path(), {"cache": {"ttl_seconds": 120}})
        cfg = resolve_config()
        assert cfg.cache.ttl_seconds == 120
        assert cfg.server.port == 8080

    def test_env_overrides_file(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_json(config_path(), {"upstream": {"host": "from-file.example"}})
        monkeypatch.setenv("TTLPROXY_UPSTREAM_HOST", "from-env.example")
        monkeypatch.setenv("TTLPROXY_TTL", "15")

        cfg = resolve_config()
        assert cfg.upstream.host == "from-env.example"
        assert cfg.cache.ttl_seconds == 15

    def test_cli_overrides_env(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TTLPROXY_PORT", "9000")
        cfg = resolve_config({"server.port": 9100})
        assert cfg.server.port == 9100

    def test_none_overrides_ignored(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TTLPROXY_PORT", "9000")
        cfg = resolve_config({"server.port": None, "upstream.host": None})
        assert cfg.server.port == 9000
        assert cfg.upstream.host == "target-server.com"

    def test_empty_env_var_ignored(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TTLPROXY_UPSTREAM_SCHEME", "")
        assert resolve_config().upstream.scheme == "https"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"server.port": 70000}, "server.port"),
            ({"upstream.port": 0}, "upstream.port"),
            ({"upstream.scheme": "ftp"}, "upstream.scheme"),
            ({"cache.ttl_seconds": 0}, "cache.ttl_seconds"),
            ({"request.timeout": -1}, "request.timeout"),
        ],
    )
    def test_invalid_values_raise_config_error(
        self, isolated_config: Path, overrides: dict[str, Any], field: str
    ) -> None:
        with pytest.raises(ConfigError, match=field) as exc_info:
            resolve_config(overrides)
        assert exc_info.value.exit_code == EXIT_CONFIG_ERROR

    def test_non_numeric_env_port(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TTLPROXY_PORT", "eighty")
        with pytest.raises(ConfigError, match="server.port"):
            resolve_config()
