"""
Port forwarding rules from the client config and their activation.

Provides:
- LocalForward / RemoteForward: immutable forwarding rules (-L / -R)
- parse_forward: LocalForward/RemoteForward argument parsing
- ForwardHandle: Handle to an active forward with close() method
- ForwardManager: Establishes rules over an asyncssh connection
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, Union

import asyncssh

from sshwrap.errors import ErrorContext, ForwardError

if TYPE_CHECKING:
    from sshwrap.config import HostConfig

logger = logging.getLogger(__name__)

_PORT_RE = re.compile(r"\d+")
_BLANKS_RE = re.compile(r"[ \t]+")


def _check_ports(local_port: int, remote_port: int) -> None:
    assert 0 <= local_port <= 65535, f"local_port out of range: {local_port}"
    assert 0 <= remote_port <= 65535, f"remote_port out of range: {remote_port}"


@dataclass(frozen=True)
class LocalForward:
    """
    A LocalForward rule (ssh -L).

    The client listens on local_address:local_port and tunnels each
    connection to remote_address:remote_port as seen from the server.
    A local_address of None binds the loopback interface.
    """
    local_address: str | None
    local_port: int
    remote_address: str
    remote_port: int

    def __post_init__(self) -> None:
        _check_ports(self.local_port, self.remote_port)


@dataclass(frozen=True)
class RemoteForward:
    """
    A RemoteForward rule (ssh -R).

    The server listens on local_address:local_port and tunnels each
    connection back to remote_address:remote_port as seen from the client.
    A local_address of None uses the server's default bind address.
    """
    local_address: str | None
    local_port: int
    remote_address: str
    remote_port: int

    def __post_init__(self) -> None:
        _check_ports(self.local_port, self.remote_port)


Forward = Union[LocalForward, RemoteForward]
F = TypeVar("F", LocalForward, RemoteForward)


def _parse_port(text: str) -> int | None:
    if not _PORT_RE.fullmatch(text):
        return None
    port = int(text)
    return port if port <= 65535 else None


def parse_forward(value: str, forward_cls: type[F]) -> F | None:
    """
    Parse a LocalForward/RemoteForward argument.

    Accepted shapes (value already dequoted):
    - lport:rhost:rport
    - laddr:lport:rhost:rport
    - the OpenSSH spelling with a blank between the halves
      ("8080 internal:80"), normalised to the colon form

    Args:
        value: Directive argument
        forward_cls: LocalForward or RemoteForward

    Returns:
        The parsed rule, or None if the argument is malformed
    """
    parts = _BLANKS_RE.sub(":", value.strip()).split(":")

    if len(parts) == 3:
        local_address = None
        local_port, remote_address, remote_port = parts
    elif len(parts) == 4:
        local_address, local_port, remote_address, remote_port = parts
    else:
        return None

    lport = _parse_port(local_port)
    rport = _parse_port(remote_port)
    if lport is None or rport is None or not remote_address:
        return None

    return forward_cls(local_address, lport, remote_address, rport)


class ForwardHandle:
    """
    Handle to an active port forward.

    Provides a close() method to stop the forward.
    """

    def __init__(
        self,
        forward: Forward,
        listener: Any,  # asyncssh.SSHListener
        manager: "ForwardManager",
    ) -> None:
        self._forward = forward
        self._listener = listener
        self._manager = manager
        self._closed = False

    @property
    def forward(self) -> Forward:
        """Return the rule this handle was established from."""
        return self._forward

    @property
    def port(self) -> int:
        """Return the bound listening port (resolves a requested port of 0)."""
        return self._listener.get_port()

    @property
    def is_active(self) -> bool:
        """Return True if the forward is still active."""
        return not self._closed

    async def close(self) -> None:
        """Close the forward."""
        if self._closed:
            return

        self._closed = True
        self._listener.close()
        await self._listener.wait_closed()
        self._manager._remove_handle(self)


class ForwardManager:
    """
    Establishes forwarding rules over an asyncssh connection and tracks
    the resulting handles.
    """

    def __init__(self, conn: "asyncssh.SSHClientConnection | None" = None) -> None:
        self._conn = conn
        self._handles: list[ForwardHandle] = []

    def set_connection(self, conn: "asyncssh.SSHClientConnection") -> None:
        """Set the SSH connection to use for forwarding."""
        self._conn = conn

    @property
    def active_forwards(self) -> list[ForwardHandle]:
        """Return list of active forward handles."""
        return [h for h in self._handles if h.is_active]

    async def forward_local(self, forward: LocalForward) -> ForwardHandle:
        """
        Start listening locally for a LocalForward rule.

        Returns:
            ForwardHandle with close() method

        Raises:
            ForwardError: If the listener could not be opened
        """
        assert self._conn is not None, "No SSH connection set"

        listen_host = forward.local_address if forward.local_address is not None else "localhost"
        try:
            listener = await self._conn.forward_local_port(
                listen_host,
                forward.local_port,
                forward.remote_address,
                forward.remote_port,
            )
        except (OSError, asyncssh.Error) as e:
            raise ForwardError(
                f"Failed to open local forward {listen_host}:{forward.local_port}: {e}",
                context=ErrorContext(original_error=str(e)),
            ) from e

        return self._track(forward, listener)

    async def forward_remote(self, forward: RemoteForward) -> ForwardHandle:
        """
        Ask the server to listen for a RemoteForward rule.

        Returns:
            ForwardHandle with close() method

        Raises:
            ForwardError: If the server refused the request
        """
        assert self._conn is not None, "No SSH connection set"

        listen_host = forward.local_address or ""
        try:
            listener = await self._conn.forward_remote_port(
                listen_host,
                forward.local_port,
                forward.remote_address,
                forward.remote_port,
            )
        except (OSError, asyncssh.Error) as e:
            raise ForwardError(
                f"Failed to open remote forward {listen_host}:{forward.local_port}: {e}",
                context=ErrorContext(original_error=str(e)),
            ) from e

        return self._track(forward, listener)

    async def forward_host(self, host_config: "HostConfig") -> list[ForwardHandle]:
        """
        Establish every LocalForward and RemoteForward of a host.

        Local rules come first; within a kind the order is by port then
        address so repeated runs bind in the same sequence.
        """
        handles: list[ForwardHandle] = []
        for lf in sorted(host_config.local_forwards, key=_forward_sort_key):
            handles.append(await self.forward_local(lf))
        for rf in sorted(host_config.remote_forwards, key=_forward_sort_key):
            handles.append(await self.forward_remote(rf))
        return handles

    async def close_all(self) -> None:
        """Close all active forwards."""
        for handle in list(self._handles):
            await handle.close()

    def _track(self, forward: Forward, listener: Any) -> ForwardHandle:
        handle = ForwardHandle(forward=forward, listener=listener, manager=self)
        self._handles.append(handle)
        logger.info(f"Forward established: {forward} on port {handle.port}")
        return handle

    def _remove_handle(self, handle: ForwardHandle) -> None:
        """Remove a handle from tracking (called by ForwardHandle.close())."""
        if handle in self._handles:
            self._handles.remove(handle)
        logger.info(f"Forward closed: {handle.forward}")


def _forward_sort_key(forward: Forward) -> tuple[int, str, str, int]:
    return (
        forward.local_port,
        forward.local_address or "",
        forward.remote_address,
        forward.remote_port,
    )
