"""
Error taxonomy for the sshwrap connection façade.

The config resolver itself never raises for configuration problems: bad
directives are dropped and an unreadable config file yields no hosts. These
exceptions cover the façade built on top of it.

Error hierarchy:
- SSHWrapError (base)
  - NotConnected (operation requires connect())
  - CommandTimeout (exec did not finish in time)
  - ForwardError (port forward could not be established)
  - SSHConnectionError
    - ConnectionRefused
    - ConnectionTimeout
    - HostUnreachable
  - AuthenticationError
    - AuthFailed (invalid credentials)
    - HostKeyMismatch (known_hosts verification failed)
    - NoMutualKex (key exchange algorithm mismatch)
    - KeyLoadError (private key file issues)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any


@dataclass
class ErrorContext:
    """
    Structured context for façade errors.

    Carries the resolved connection parameters that were in effect when
    the error happened.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    key_path: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collide with field names: {collisions}"
                )
                result.update(value)
            else:
                result[key] = value
        return result


class SSHWrapError(Exception):
    """
    Base exception for all sshwrap errors.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SSHWrapError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a flat dictionary for structured logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


class NotConnected(SSHWrapError):
    """An operation was attempted before connect()."""
    pass


class CommandTimeout(SSHWrapError):
    """
    A remote command did not complete within its timeout.

    Output received before the deadline is kept on the exception.
    """

    def __init__(
        self,
        message: str,
        command: str,
        timeout: float,
        stdout: str = "",
        stderr: str = "",
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["command"] = command
        context.extra["timeout"] = timeout
        super().__init__(message, context)
        self.command = command
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr


class ForwardError(SSHWrapError):
    """A LocalForward or RemoteForward could not be established."""
    pass


# ---------------------------------------------------------------------------
# Connection Errors
# ---------------------------------------------------------------------------

class SSHConnectionError(SSHWrapError):
    """Base class for connection-related errors."""
    pass


class ConnectionRefused(SSHConnectionError):
    """Server actively refused the connection."""
    pass


class ConnectionTimeout(SSHConnectionError):
    """Connection attempt timed out."""
    pass


class HostUnreachable(SSHConnectionError):
    """Host could not be reached (network error)."""
    pass


# ---------------------------------------------------------------------------
# Authentication Errors
# ---------------------------------------------------------------------------

class AuthenticationError(SSHWrapError):
    """Base class for authentication-related errors."""
    pass


class AuthFailed(AuthenticationError):
    """All offered credentials were rejected by the server."""
    pass


class HostKeyMismatch(AuthenticationError):
    """
    Host key verification failed.

    The server's key is not trusted by the known_hosts snapshot. Either the
    host is unknown or its key changed.
    """
    pass


class NoMutualKex(AuthenticationError):
    """Client and server could not agree on a key exchange algorithm."""
    pass


class KeyLoadError(AuthenticationError):
    """
    Failed to load a private key.

    Raised when an identity file is unreadable, malformed or encrypted
    (passphrases are never prompted for).
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        assert key_path is None or (isinstance(key_path, str) and key_path.strip()), (
            f"key_path must be None or a non-empty string, got {key_path!r}"
        )
        if context is None:
            context = ErrorContext()
        context.key_path = key_path
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
