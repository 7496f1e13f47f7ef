"""
Per-user state paths.

pocket-ssh keeps its trust store and settings in its own state directory
rather than ~/.ssh, so it never rewrites OpenSSH's files.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

STATE_DIR_ENV = "POCKET_SSH_HOME"
TRUST_STORE_FILENAME = "known_hosts.json"
CONFIG_FILENAME = "config.json"


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_state_dir() -> Path:
    """
    Get the directory holding pocket-ssh state.

    Returns:
        $POCKET_SSH_HOME if set, %APPDATA%\\pocket-ssh on Windows,
        otherwise ~/.pocket_ssh
    """
    override = os.environ.get(STATE_DIR_ENV)
    if override:
        return expand_path(override)
    if is_windows():
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "pocket-ssh"
    return Path.home() / ".pocket_ssh"


def get_trust_store_path() -> Path:
    return get_state_dir() / TRUST_STORE_FILENAME


def get_config_path() -> Path:
    return get_state_dir() / CONFIG_FILENAME


def expand_path(path: str | Path) -> Path:
    """Expand ~ and environment variables in a path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path))))
