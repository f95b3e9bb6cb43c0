"""
Pytest fixtures for sshwrap tests.

Provides:
- Isolated home and ~/.ssh directories under tmp_path
- make_config: writes config/known_hosts and builds a resolver with an
  injected login name
- MockSSHServer fixture for integration tests (no Docker required)
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Callable

import pytest

from sshwrap.config import DefaultSSHConfiguration

if TYPE_CHECKING:
    from sshwrap.testing.mock_server import MockSSHServer


TEST_USER = "tester"


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Fake home directory."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def ssh_dir(home: Path) -> Path:
    """Fake ~/.ssh directory."""
    path = home / ".ssh"
    path.mkdir()
    return path


@pytest.fixture
def make_config(
    ssh_dir: Path,
    home: Path,
) -> Callable[..., DefaultSSHConfiguration]:
    """
    Factory writing ~/.ssh/config (and optionally known_hosts) and
    returning a resolver over the fake SSH directory.

    Usage:
        def test_example(make_config):
            config = make_config("Host a\\n  Port 2222\\n")
            assert config.lookup("a").port == 2222
    """
    def _make(
        config_text: str | None = "",
        known_hosts: bytes | None = None,
    ) -> DefaultSSHConfiguration:
        if config_text is not None:
            (ssh_dir / "config").write_text(config_text)
        if known_hosts is not None:
            (ssh_dir / "known_hosts").write_bytes(known_hosts)
        return DefaultSSHConfiguration(ssh_dir, user_name=TEST_USER, user_home=home)

    return _make


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """
    Fixture providing a MockSSHServer accepting test/test.

    Usage:
        async def test_example(mock_ssh_server):
            port = mock_ssh_server.port
            known_hosts = mock_ssh_server.known_hosts_line()
    """
    from sshwrap.testing.mock_server import MockServerConfig, MockSSHServer

    async with MockSSHServer(MockServerConfig(username="test", password="test")) as server:
        yield server
