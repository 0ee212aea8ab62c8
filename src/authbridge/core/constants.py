"""AuthBridge constants: filesystem layout, bus names, helper paths, timeouts."""

from __future__ import annotations

import os
from enum import IntEnum
from pathlib import Path

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    ENV_ERROR = 3
    DEPENDENCY_MISSING = 7


# ---------------------------------------------------------------------------
# Config directory
# ---------------------------------------------------------------------------


def _default_config_dir() -> Path:
    """Return $XDG_CONFIG_HOME/authbridge (``~/.config/authbridge`` by default)."""
    xdg = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(xdg) / "authbridge"


CONFIG_FILENAME = "config.toml"

# ---------------------------------------------------------------------------
# polkit D-Bus names
# ---------------------------------------------------------------------------

POLKIT_BUS_NAME = "org.freedesktop.PolicyKit1"
POLKIT_AUTHORITY_PATH = "/org/freedesktop/PolicyKit1/Authority"
POLKIT_AUTHORITY_INTERFACE = "org.freedesktop.PolicyKit1.Authority"
AGENT_INTERFACE = "org.freedesktop.PolicyKit1.AuthenticationAgent"
DEFAULT_AGENT_OBJECT_PATH = "/org/freedesktop/PolicyKit1/AuthenticationAgent"

ERROR_CANCELLED = "org.freedesktop.PolicyKit1.Error.Cancelled"
ERROR_FAILED = "org.freedesktop.PolicyKit1.Error.Failed"

DEFAULT_LOCALE = "en_US.UTF-8"

# ---------------------------------------------------------------------------
# Helper binary
# ---------------------------------------------------------------------------

# Install locations used by the major distributions, in lookup order.
DEFAULT_HELPER_PATHS: tuple[str, ...] = (
    "/usr/lib/polkit-1/polkit-agent-helper-1",  # Arch, Debian/Ubuntu (polkit >= 0.121)
    "/usr/libexec/polkit-agent-helper-1",  # Fedora, openSUSE
    "/usr/lib/policykit-1/polkit-agent-helper-1",  # older Debian/Ubuntu
)

# ---------------------------------------------------------------------------
# Timeouts and limits
# ---------------------------------------------------------------------------

DEFAULT_READ_TIMEOUT_SECONDS = 300.0  # max silence from the helper between lines
DEFAULT_TERMINATE_TIMEOUT_SECONDS = 5.0  # SIGTERM grace before SIGKILL
READ_CHUNK_BYTES = 4096
MAX_LINE_BYTES = 64 * 1024  # helper lines longer than this are cut
BUS_CALL_TIMEOUT_SECONDS = 10.0
