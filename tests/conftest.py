"""Shared test fixtures for ttlproxy.

Provides isolated config environments, a temporary cache, a recording mock
upstream, and the proxy application wired to both. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

from ttlproxy.cache import FreshnessCache
from ttlproxy.config import ENV_VARS
from ttlproxy.models import CacheConfig, GlobalConfig, UpstreamConfig
from ttlproxy.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during a
    test the cached references go stale, so a fresh manager is created on
    next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME, XDG_CACHE_HOME and XDG_DATA_HOME at
    subdirectories of tmp_path, clears every TTLPROXY_* variable, and
    changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("ttlproxy.config._is_xdg_platform", lambda: True)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet PLAIN output manager for tests that don't check output."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Cache and upstream fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cache(tmp_path: Path) -> FreshnessCache:
    """A FreshnessCache rooted in tmp_path with a 60 second default TTL."""
    c = FreshnessCache(tmp_path / "cache", default_ttl_seconds=60)
    yield c
    c.close()


class MockUpstream:
    """Stand-in upstream server that records every request it receives.

    Wraps a handler in :class:`httpx.MockTransport`; by default it answers
    ``200 {"x": 1}``.
    """

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> None:
        self.requests: list[httpx.Request] = []
        self.handler = handler or (
            lambda request: httpx.Response(
                200,
                content=b'{"x":1}',
                headers={"content-type": "application/json"},
            )
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def proxy_config(tmp_path: Path) -> GlobalConfig:
    """Config targeting ``https://target-server.com`` with a 60 second TTL."""
    return GlobalConfig(
        upstream=UpstreamConfig(host="target-server.com", port=443, scheme="https"),
        cache=CacheConfig(ttl_seconds=60, directory=str(tmp_path / "cache")),
    )


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
