"""Platform-dependent defaults and process settings for VaultSync."""

import os
import platform
import subprocess
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Any, Union


class PlatformType(Enum):
    """Platforms with distinct defaults."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    UNKNOWN = "unknown"


@lru_cache(maxsize=1)
def detect_platform() -> PlatformType:
    system = platform.system().lower()
    if system == "windows":
        return PlatformType.WINDOWS
    if system == "darwin":
        return PlatformType.MACOS
    if system == "linux":
        return PlatformType.LINUX
    return PlatformType.UNKNOWN


def is_windows() -> bool:
    return detect_platform() == PlatformType.WINDOWS


def normalize_path(path: Union[str, Path]) -> Path:
    """Absolute, symlink-resolved path with ``~`` expanded."""
    return Path(path).expanduser().resolve()


def get_default_data_dir() -> Path:
    """Default location of the tracked data directory."""
    if is_windows():
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "VaultSync"
    return Path.home() / ".vaultsync"


def get_platform_specific_defaults() -> Dict[str, Any]:
    """
    Configuration defaults that differ between platforms.

    Returns:
        Dictionary keyed by Config field name
    """
    defaults = {
        'data_dir': get_default_data_dir(),
        'log_level': "INFO",
        'git_command_timeout': 30.0,
        'git_network_timeout': 60.0,
        'shutdown_timeout': 10.0,
    }

    if is_windows():
        # Process start-up and antivirus scans make git noticeably slower on Windows
        defaults.update({
            'git_command_timeout': 45.0,
            'git_network_timeout': 90.0,
        })

    return defaults


def get_git_executable() -> str:
    return "git.exe" if is_windows() else "git"


def get_process_creation_flags() -> int:
    """
    Creation flags for child processes.

    On Windows every git invocation would otherwise flash a console window
    when the host is a GUI process, so CREATE_NO_WINDOW is requested there.
    Other platforms need no flags.
    """
    if is_windows():
        return getattr(subprocess, "CREATE_NO_WINDOW", 0x08000000)
    return 0
