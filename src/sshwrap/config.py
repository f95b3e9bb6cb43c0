"""
OpenSSH client config resolution.

Provides:
- scan_line: Normalises one config line into a Directive
- parse_config: Host-block parser producing the ordered host store
- HostConfig: Connection parameters for one Host pattern
- DefaultSSHConfiguration: Resolver over ~/.ssh (config, known_hosts,
  default identities)

Semantics follow OpenSSH's line grammar: keywords are case-insensitive, the
first value obtained for an option wins, and option lines before the first
Host line are ignored. Host patterns are literal keys; wildcards are not
expanded.

Usage:
    config = DefaultSSHConfiguration()
    host = config.lookup("myserver")
    print(host.host_name, host.port, host.user)
"""
from __future__ import annotations

import io
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, NamedTuple, Protocol

from sshwrap.forwarding import LocalForward, RemoteForward, parse_forward
from sshwrap.platform import (
    discover_identities,
    get_config_path,
    get_known_hosts_path,
    get_ssh_dir,
    get_user_home,
    get_user_name,
    is_readable_file,
    resolve_identity_path,
)

logger = logging.getLogger(__name__)

# IANA assigned port number for SSH.
SSH_PORT = 22

_SEPARATOR_RE = re.compile(r"[ \t]*[= \t]")
_BLANKS_RE = re.compile(r"[ \t]+")
_DECIMAL_RE = re.compile(r"[+-]?\d+")


@dataclass(eq=True)
class HostConfig:
    """
    Configuration of one Host pattern.

    While parsing, unset fields hold their sentinel (None, or port < 1) and
    the first value written wins. Once returned from lookup(),
    host_name, user and port are always populated and patterns_applied is
    True; the resolver never modifies the record after that.
    """
    host_name: str | None = None
    port: int = 0
    user: str | None = None
    identity_file: Path | None = None
    preferred_authentications: str | None = None
    batch_mode: bool | None = None
    strict_host_key_checking: str | None = None
    local_forwards: set[LocalForward] = field(default_factory=set)
    remote_forwards: set[RemoteForward] = field(default_factory=set)
    patterns_applied: bool = False

    @property
    def is_batch_mode(self) -> bool:
        """True if batch (non-interactive) mode was explicitly requested."""
        return self.batch_mode is True


class Directive(NamedTuple):
    """One scanned config line: keyword plus raw argument."""
    keyword: str
    argument: str

    @property
    def name(self) -> str:
        """Lower-cased keyword for case-insensitive comparison."""
        return self.keyword.lower()

    @property
    def value(self) -> str:
        """Argument with one layer of double quotes removed."""
        return dequote(self.argument)


def dequote(value: str) -> str:
    """Strip one layer of surrounding double quotes. No escapes are processed."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def strip_whitespace(value: str) -> str:
    """Remove every whitespace character from value."""
    return "".join(value.split())


def yes_no(value: str) -> bool:
    """Map "yes" (any case) to True and anything else to False."""
    return value.lower() == "yes"


def scan_line(line: str) -> Directive | None:
    """
    Scan one config line.

    Returns:
        Directive(keyword, argument) or None for blank lines, comments and
        lines with a keyword but no argument
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    parts = _SEPARATOR_RE.split(line, maxsplit=1)
    if len(parts) < 2:
        return None

    keyword = parts[0].strip()
    argument = parts[1].strip()
    if not keyword or not argument:
        return None

    return Directive(keyword, argument)


def _parse_port(value: str) -> int | None:
    if not _DECIMAL_RE.fullmatch(value):
        return None
    port = int(value)
    return port if 1 <= port <= 65535 else None


def parse_config(lines: Iterable[str], user_home: Path | str) -> dict[str, HostConfig]:
    """
    Parse config lines into the host store.

    Args:
        lines: Config file lines
        user_home: Home directory for IdentityFile resolution

    Returns:
        Host pattern -> HostConfig, in order of first appearance
    """
    hosts: dict[str, HostConfig] = {}
    current: list[HostConfig] = []

    for line_no, line in enumerate(lines, 1):
        directive = scan_line(line)
        if directive is None:
            continue

        name = directive.name

        if name == "host":
            current.clear()
            for token in _BLANKS_RE.split(directive.argument):
                if not token:
                    continue
                pattern = dequote(token)
                host = hosts.get(pattern)
                if host is None:
                    host = HostConfig()
                    hosts[pattern] = host
                current.append(host)
            continue

        if not current:
            # Option outside any Host block; there is nothing to match it against.
            continue

        if name == "hostname":
            value = directive.value
            for host in current:
                if host.host_name is None:
                    host.host_name = value

        elif name == "user":
            value = directive.value
            for host in current:
                if host.user is None:
                    host.user = value

        elif name == "port":
            port = _parse_port(directive.value)
            if port is None:
                logger.debug(f"line {line_no}: ignoring bad port {directive.argument!r}")
                continue
            for host in current:
                if host.port < 1:
                    host.port = port

        elif name == "identityfile":
            path = resolve_identity_path(directive.value, user_home)
            for host in current:
                if host.identity_file is None:
                    host.identity_file = path

        elif name == "preferredauthentications":
            value = strip_whitespace(directive.value)
            for host in current:
                if host.preferred_authentications is None:
                    host.preferred_authentications = value

        elif name == "batchmode":
            flag = yes_no(directive.value)
            for host in current:
                if host.batch_mode is None:
                    host.batch_mode = flag

        elif name == "stricthostkeychecking":
            value = directive.value
            for host in current:
                if host.strict_host_key_checking is None:
                    host.strict_host_key_checking = value

        elif name == "localforward":
            lf = parse_forward(directive.value, LocalForward)
            if lf is None:
                logger.debug(f"line {line_no}: ignoring bad LocalForward {directive.argument!r}")
                continue
            for host in current:
                host.local_forwards.add(lf)

        elif name == "remoteforward":
            rf = parse_forward(directive.value, RemoteForward)
            if rf is None:
                logger.debug(f"line {line_no}: ignoring bad RemoteForward {directive.argument!r}")
                continue
            for host in current:
                host.remote_forwards.add(rf)

    return hosts


class SSHConfiguration(Protocol):
    """Capabilities a connection needs from a client-config resolver."""

    def lookup(self, host_name: str) -> HostConfig:
        """
        Locate the configuration for a host request.

        Args:
            host_name: The name the user supplied. This may be a real host
                name or just a Host pattern from the config file.

        Returns:
            Fully defaulted configuration. Never None.
        """
        ...

    def get_identities(self) -> frozenset[Path]:
        ...

    def get_known_hosts(self) -> BinaryIO:
        ...


class DefaultSSHConfiguration:
    """
    Resolver over an OpenSSH client directory.

    The config file is parsed once, at construction; later edits to it are
    not seen. known_hosts is read on first request and cached for the
    lifetime of the resolver.

    Usage:
        config = DefaultSSHConfiguration()            # ~/.ssh
        config = DefaultSSHConfiguration(Path("/tmp/ssh"))
        config = DefaultSSHConfiguration.from_files(
            config_file, known_hosts_file, [key_path],
        )

    lookup() and get_known_hosts() are safe to call from several threads.
    """

    def __init__(
        self,
        ssh_dir: Path | str | None = None,
        *,
        user_name: str | None = None,
        user_home: Path | str | None = None,
    ) -> None:
        """
        Load the user's configuration from an SSH directory.

        Args:
            ssh_dir: Directory holding config, known_hosts and default
                identities (defaults to <user_home>/.ssh)
            user_name: Login name used to default User (defaults to the
                current process user)
            user_home: Home directory for IdentityFile resolution (defaults
                to the current user's home)
        """
        home = Path(user_home) if user_home is not None else get_user_home()
        ssh_path = Path(ssh_dir) if ssh_dir is not None else get_ssh_dir(home)

        self._setup(
            config_file=get_config_path(ssh_path),
            known_hosts_file=get_known_hosts_path(ssh_path),
            identities=discover_identities(ssh_path),
            user_name=user_name,
            user_home=home,
        )
        logger.debug(f"Identities found in {ssh_path}: {sorted(map(str, self._identities))}")

    @classmethod
    def from_files(
        cls,
        config_file: Path | str,
        known_hosts_file: Path | str | None,
        identities: Iterable[Path | str] = (),
        *,
        user_name: str | None = None,
        user_home: Path | str | None = None,
    ) -> "DefaultSSHConfiguration":
        """
        Load configuration from explicit files.

        Identities are taken as given; they are not checked for readability.
        """
        instance = cls.__new__(cls)
        instance._setup(
            config_file=Path(config_file),
            known_hosts_file=Path(known_hosts_file) if known_hosts_file is not None else None,
            identities=frozenset(Path(p) for p in identities),
            user_name=user_name,
            user_home=Path(user_home) if user_home is not None else get_user_home(),
        )
        return instance

    def _setup(
        self,
        config_file: Path,
        known_hosts_file: Path | None,
        identities: frozenset[Path],
        user_name: str | None,
        user_home: Path,
    ) -> None:
        self._config_file = config_file
        self._known_hosts_file = known_hosts_file
        self._identities = identities
        self._user_name = user_name if user_name is not None else get_user_name()
        self._user_home = user_home

        self._lock = threading.Lock()
        self._known_hosts_lock = threading.Lock()
        self._known_hosts_buffer: bytes | None = None

        self._hosts = self._load_hosts()

    @property
    def config_file(self) -> Path:
        return self._config_file

    @property
    def known_hosts_file(self) -> Path | None:
        return self._known_hosts_file

    def _load_hosts(self) -> dict[str, HostConfig]:
        """Parse the config file; any read failure yields an empty store."""
        if not self._config_file.exists():
            return {}

        try:
            with open(self._config_file, "r", encoding="utf-8") as f:
                return parse_config(f, self._user_home)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable SSH config {self._config_file}: {e}")
            return {}

    def lookup(self, host_name: str) -> HostConfig:
        """
        Get the fully defaulted configuration for host_name.

        A name with no Host block gets a fresh record, which is stored so
        later lookups return the same object. Defaults: HostName is the
        name itself, User is the local login name, Port is 22.

        Args:
            host_name: Name the user supplied (alias or real host)

        Returns:
            HostConfig with host_name, user and port set
        """
        with self._lock:
            host = self._hosts.get(host_name)
            is_new = host is None
            if host is None:
                host = HostConfig()

            if host.patterns_applied:
                return host

            if host.host_name is None:
                host.host_name = host_name
            if host.user is None:
                host.user = self._user_name
            if host.port < 1:
                host.port = SSH_PORT

            host.patterns_applied = True

            if is_new:
                self._hosts[host_name] = host

            return host

    def get_identities(self) -> frozenset[Path]:
        """Return the private key paths known to this resolver."""
        return self._identities

    def get_known_hosts(self) -> BinaryIO:
        """
        Return a fresh reader over the cached known_hosts contents.

        The file is read on the first call only. A missing or unreadable
        file reads as empty.

        Raises:
            OSError: If reading an existing, readable file fails. Nothing is
                cached in that case.
        """
        with self._known_hosts_lock:
            if self._known_hosts_buffer is None:
                path = self._known_hosts_file
                if path is not None and is_readable_file(path):
                    with open(path, "rb") as f:
                        self._known_hosts_buffer = f.read()
                else:
                    self._known_hosts_buffer = b""

            return io.BytesIO(self._known_hosts_buffer)

    def get_hosts(self) -> list[str]:
        """Get the host patterns in the order they were first declared."""
        with self._lock:
            return list(self._hosts)


def get_ssh_configuration() -> DefaultSSHConfiguration:
    """Get the resolver for the current user's ~/.ssh directory."""
    return DefaultSSHConfiguration()
