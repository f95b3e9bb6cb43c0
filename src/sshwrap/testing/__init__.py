"""
Testing utilities for sshwrap.

Provides MockSSHServer for integration testing without Docker.
"""
from sshwrap.testing.mock_server import MockServerConfig, MockSSHServer

__all__ = ["MockSSHServer", "MockServerConfig"]
