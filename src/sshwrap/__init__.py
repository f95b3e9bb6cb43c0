"""sshwrap: OpenSSH client-config resolver with a thin asyncssh façade."""

__version__ = "0.1.0"

from sshwrap.config import (
    DefaultSSHConfiguration,
    Directive,
    HostConfig,
    SSHConfiguration,
    get_ssh_configuration,
    parse_config,
    scan_line,
)
from sshwrap.connection import ExecResult, SSHConnection
from sshwrap.errors import (
    AuthenticationError,
    AuthFailed,
    CommandTimeout,
    ConnectionRefused,
    ConnectionTimeout,
    ErrorContext,
    ForwardError,
    HostKeyMismatch,
    HostUnreachable,
    KeyLoadError,
    NoMutualKex,
    NotConnected,
    SSHConnectionError,
    SSHWrapError,
)
from sshwrap.forwarding import (
    ForwardHandle,
    ForwardManager,
    LocalForward,
    RemoteForward,
    parse_forward,
)
from sshwrap.platform import (
    discover_identities,
    get_config_path,
    get_known_hosts_path,
    get_ssh_dir,
    get_user_home,
    get_user_name,
    resolve_identity_path,
)

__all__ = [
    # Config
    "DefaultSSHConfiguration",
    "Directive",
    "HostConfig",
    "SSHConfiguration",
    "get_ssh_configuration",
    "parse_config",
    "scan_line",
    # Connection
    "SSHConnection",
    "ExecResult",
    # Forwarding
    "LocalForward",
    "RemoteForward",
    "parse_forward",
    "ForwardHandle",
    "ForwardManager",
    # Errors
    "SSHWrapError",
    "ErrorContext",
    "NotConnected",
    "CommandTimeout",
    "ForwardError",
    "SSHConnectionError",
    "ConnectionRefused",
    "ConnectionTimeout",
    "HostUnreachable",
    "AuthenticationError",
    "AuthFailed",
    "HostKeyMismatch",
    "NoMutualKex",
    "KeyLoadError",
    # Platform
    "get_ssh_dir",
    "get_config_path",
    "get_known_hosts_path",
    "get_user_home",
    "get_user_name",
    "resolve_identity_path",
    "discover_identities",
]
