"""
Thin SSH connection façade driven by the client-config resolver.

Provides:
- SSHConnection: Async context manager for an asyncssh client connection
- ExecResult: Result of command execution

The host name given to SSHConnection is resolved through an
SSHConfiguration first, so Host aliases, HostName, User, Port,
IdentityFile, PreferredAuthentications, BatchMode, StrictHostKeyChecking
and the forwarding rules from ~/.ssh/config all take effect. The resolver
is the only configuration source: asyncssh's own config loading and
agent lookup are switched off.

Error types are imported from sshwrap.errors for programmatic handling.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncssh

from sshwrap.config import DefaultSSHConfiguration, HostConfig, SSHConfiguration
from sshwrap.errors import (
    AuthFailed,
    CommandTimeout,
    ConnectionRefused,
    ConnectionTimeout,
    ErrorContext,
    HostKeyMismatch,
    HostUnreachable,
    KeyLoadError,
    NoMutualKex,
    NotConnected,
    SSHConnectionError,
    SSHWrapError,
)
from sshwrap.forwarding import ForwardHandle, ForwardManager
from sshwrap.platform import is_readable_file

logger = logging.getLogger(__name__)


@dataclass
class ExecResult:
    """Result of a command execution."""
    stdout: str
    stderr: str
    exit_code: int


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class SSHConnection:
    """
    Async SSH connection built from resolved client configuration.

    Usage:
        async with SSHConnection("myserver") as conn:
            result = await conn.exec("uname -a")

        # Explicit resolver, explicit overrides
        config = DefaultSSHConfiguration(Path("/etc/myapp/ssh"))
        conn = SSHConnection("build", username="ci", configuration=config)
        await conn.connect()
        try:
            handles = await conn.open_forwards()
        finally:
            await conn.disconnect()
    """

    def __init__(
        self,
        host: str,
        username: str | None = None,
        port: int | None = None,
        *,
        configuration: SSHConfiguration | None = None,
        password: str | None = None,
        connect_timeout: float = 30.0,
    ) -> None:
        """
        Resolve connection parameters for host.

        Args:
            host: Host alias or real host name, looked up in the resolver
            username: Overrides the resolved User
            port: Overrides the resolved Port
            configuration: Resolver to use (defaults to ~/.ssh)
            password: Password for password auth; never prompted for
            connect_timeout: Seconds allowed for connect and auth
        """
        assert host, "Host must be specified"
        assert connect_timeout > 0, f"connect_timeout must be positive, got {connect_timeout}"

        if configuration is None:
            configuration = DefaultSSHConfiguration()

        self._configuration = configuration
        self._alias = host
        self._host_config = configuration.lookup(host)

        self._host = self._host_config.host_name or host
        self._port = port if port is not None else self._host_config.port
        self._username = username if username is not None else self._host_config.user

        assert 1 <= self._port <= 65535, f"Port must be between 1 and 65535, got {self._port}"

        self._password = password
        self._connect_timeout = connect_timeout

        self._conn: asyncssh.SSHClientConnection | None = None
        self._forwards = ForwardManager()

    @property
    def host(self) -> str:
        """Real host name being connected to."""
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def host_config(self) -> HostConfig:
        """Resolved configuration for the requested alias."""
        return self._host_config

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def active_forwards(self) -> list[ForwardHandle]:
        return self._forwards.active_forwards

    async def __aenter__(self) -> "SSHConnection":
        """Connect and authenticate."""
        return await self.connect()

    async def __aexit__(self, *args: Any) -> None:
        """Disconnect and cleanup."""
        await self.disconnect()

    def _error_context(self, **extra: Any) -> ErrorContext:
        return ErrorContext(
            host=self._host,
            port=self._port,
            username=self._username,
            extra=extra,
        )

    def _load_known_hosts(self) -> asyncssh.SSHKnownHosts | None:
        """
        Build the trusted host key set.

        StrictHostKeyChecking=no disables verification. Every other value
        (including "ask", as nothing is ever prompted) verifies against the
        known_hosts snapshot, rejecting unknown hosts.
        """
        policy = (self._host_config.strict_host_key_checking or "").lower()
        if policy == "no":
            logger.warning(f"Host key checking disabled for {self._alias}")
            return None

        try:
            data = self._configuration.get_known_hosts().read()
        except OSError as e:
            ctx = self._error_context()
            ctx.original_error = str(e)
            raise SSHWrapError(f"Failed to initialize known hosts: {e}", context=ctx) from e

        # Like ssh, skip entries that do not parse instead of failing the whole file.
        entries: list[str] = []
        for line in data.decode("utf-8", errors="replace").splitlines():
            try:
                asyncssh.import_known_hosts(line)
            except ValueError as e:
                logger.warning(f"Skipping invalid known_hosts entry: {e}")
                continue
            entries.append(line)

        return asyncssh.import_known_hosts("\n".join(entries) + "\n")

    def _client_keys(self) -> list[str]:
        """The host's IdentityFile first, then the resolver's identities."""
        keys: list[Path] = []

        identity_file = self._host_config.identity_file
        if identity_file is not None:
            if is_readable_file(identity_file):
                keys.append(identity_file)
            else:
                logger.debug(f"Skipping unreadable IdentityFile {identity_file}")

        for path in sorted(self._configuration.get_identities()):
            if path not in keys:
                keys.append(path)

        return [str(p) for p in keys]

    def _build_options(self) -> dict[str, Any]:
        client_keys = self._client_keys()

        options: dict[str, Any] = {
            "host": self._host,
            "port": self._port,
            "username": self._username,
            "connect_timeout": self._connect_timeout,
            "known_hosts": self._load_known_hosts(),
            "client_keys": client_keys or None,
            "agent_path": None,
            "config": None,
        }

        if self._password is not None:
            options["password"] = self._password

        if self._host_config.preferred_authentications:
            options["preferred_auth"] = self._host_config.preferred_authentications

        if self._host_config.is_batch_mode:
            options["kbdint_auth"] = False

        return options

    async def connect(self) -> "SSHConnection":
        """
        Open and authenticate the connection.

        Raises:
            SSHConnectionError: Network level failure
            AuthenticationError: Credentials, host key or key exchange failure
        """
        if self._conn is not None:
            return self

        ctx = self._error_context()
        options = self._build_options()

        logger.info(
            f"Connecting to {self._username}@{self._host}:{self._port} (alias {self._alias!r})"
        )

        try:
            self._conn = await asyncssh.connect(**options)
        except (OSError, asyncssh.Error, asyncssh.KeyImportError, asyncio.TimeoutError) as e:
            mapped = self._map_exception(e, ctx)
            logger.info(f"Connection to {self._host}:{self._port} failed: {mapped.error_type}")
            raise mapped from e

        self._forwards.set_connection(self._conn)
        logger.info(f"Connected to {self._host}:{self._port}")
        return self

    def _map_exception(self, exc: Exception, ctx: ErrorContext) -> SSHWrapError:
        """Map asyncssh and socket exceptions to our error taxonomy."""
        ctx.original_error = str(exc)

        if isinstance(exc, asyncssh.KeyImportError):
            return KeyLoadError(f"Failed to load key: {exc}", reason=str(exc), context=ctx)

        if isinstance(exc, asyncssh.PermissionDenied):
            return AuthFailed(f"Authentication failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.HostKeyNotVerifiable):
            return HostKeyMismatch(f"Host key verification failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.KeyExchangeFailed):
            return NoMutualKex(f"Key exchange failed: {exc}", context=ctx)

        if isinstance(exc, asyncssh.ConnectionLost):
            return SSHConnectionError(f"Connection lost: {exc}", context=ctx)

        if isinstance(exc, asyncio.TimeoutError):
            return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)

        if isinstance(exc, ConnectionRefusedError):
            return ConnectionRefused(f"Connection refused: {exc}", context=ctx)

        if isinstance(exc, OSError):
            error_str = str(exc).lower()
            if "timed out" in error_str:
                return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)
            if "unreachable" in error_str or "no route" in error_str:
                return HostUnreachable(f"Host unreachable: {exc}", context=ctx)
            return SSHConnectionError(f"Connection failed: {exc}", context=ctx)

        return SSHConnectionError(f"SSH failure: {exc}", context=ctx)

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise NotConnected(
                "You must call connect() before attempting this operation",
                context=self._error_context(),
            )
        return self._conn

    async def exec(self, command: str, timeout: float | None = None) -> ExecResult:
        """
        Execute a command on the remote host.

        Args:
            command: The command to execute
            timeout: Seconds to wait for completion (None waits forever)

        Returns:
            ExecResult with stdout, stderr and exit_code. exit_code is -1
            when the command was terminated by a signal.

        Raises:
            NotConnected: If connect() has not been called
            CommandTimeout: If the command did not finish within timeout;
                the channel is closed and partial output is attached
        """
        conn = self._require_connection()

        try:
            result = await conn.run(command, check=False, timeout=timeout)
        except asyncssh.TimeoutError as e:
            raise CommandTimeout(
                f"Command did not finish within {timeout}s: {command}",
                command=command,
                timeout=timeout or 0.0,
                stdout=_text(e.stdout),
                stderr=_text(e.stderr),
                context=self._error_context(),
            ) from e

        exit_code = result.exit_status if result.exit_status is not None else -1
        return ExecResult(
            stdout=_text(result.stdout),
            stderr=_text(result.stderr),
            exit_code=exit_code,
        )

    async def open_forwards(self) -> list[ForwardHandle]:
        """
        Establish the LocalForward and RemoteForward rules of the host.

        Raises:
            NotConnected: If connect() has not been called
            ForwardError: If a listener could not be opened
        """
        self._require_connection()
        return await self._forwards.forward_host(self._host_config)

    async def disconnect(self) -> "SSHConnection":
        """Close forwards and the SSH connection."""
        await self._forwards.close_all()

        if self._conn is not None:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None
            logger.info(f"Disconnected from {self._host}:{self._port}")

        return self
