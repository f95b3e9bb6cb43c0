"""
Path handling and identity discovery for the OpenSSH client layout.

Provides:
- SSH directory and file paths (~/.ssh, config, known_hosts)
- Current user name and home directory
- IdentityFile path resolution
- Default identity candidates and readability checks
"""
from __future__ import annotations

import getpass
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# Candidate private keys probed in the SSH directory, in this order.
DEFAULT_IDENTITY_NAMES = ("identity", "id_rsa", "id_dsa")

# Used when the login name cannot be determined.
FALLBACK_USER_NAME = "nobody"


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_user_home() -> Path:
    """
    Get the current user's home directory.

    Returns:
        %USERPROFILE% on Windows when set, otherwise Path.home()
    """
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile)
    return Path.home()


def get_user_name() -> str:
    """
    Get the login name of the current process user.

    getpass.getuser() fails when no login variable is set and the uid has
    no passwd entry; FALLBACK_USER_NAME is returned in that case.
    """
    try:
        return getpass.getuser()
    except (OSError, KeyError) as e:
        logger.warning(f"Cannot determine login name, using {FALLBACK_USER_NAME!r}: {e}")
        return FALLBACK_USER_NAME


def get_ssh_dir(user_home: Path | str | None = None) -> Path:
    """
    Get the SSH directory.

    Args:
        user_home: Home directory to use (defaults to the current user's)

    Returns:
        <home>/.ssh
    """
    home = Path(user_home) if user_home is not None else get_user_home()
    return home / ".ssh"


def get_config_path(ssh_dir: Path | None = None) -> Path:
    """Get the SSH client config file path."""
    return (ssh_dir or get_ssh_dir()) / "config"


def get_known_hosts_path(ssh_dir: Path | None = None) -> Path:
    """Get the known_hosts file path."""
    return (ssh_dir or get_ssh_dir()) / "known_hosts"


def resolve_identity_path(path: str, user_home: Path | str) -> Path:
    """
    Resolve an IdentityFile argument against the user's home directory.

    Rules:
    - "~/x" resolves to <home>/x
    - absolute paths are used as given
    - any other relative path resolves to <home>/<path>

    Args:
        path: Dequoted IdentityFile argument
        user_home: Home directory to resolve against

    Returns:
        Resolved Path
    """
    home = Path(user_home)
    if path.startswith("~/"):
        return home / path[2:]

    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return home / candidate


def is_readable_file(path: Path) -> bool:
    """Check that path is a regular file the current process can read."""
    return path.is_file() and os.access(path, os.R_OK)


def default_identity_paths(ssh_dir: Path) -> list[Path]:
    """Get the conventional identity candidates in ssh_dir (unfiltered)."""
    return [ssh_dir / name for name in DEFAULT_IDENTITY_NAMES]


def discover_identities(ssh_dir: Path) -> frozenset[Path]:
    """
    Discover readable private keys among the default candidates.

    Returns:
        Candidates from DEFAULT_IDENTITY_NAMES that are readable right now
    """
    return frozenset(
        path for path in default_identity_paths(ssh_dir)
        if is_readable_file(path)
    )
