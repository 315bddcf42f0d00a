"""Executable discovery utilities for sitepipe.

Every external tool the pipeline drives (esbuild, sass, postcss, jekyll) is
located the same way: the system PATH first, then the project's local
installations (``node_modules/.bin`` for npm tools, ``bin/`` for bundler
binstubs).

Functions:
    platform_executable: Apply the platform's script suffix to a tool name.
    find_executable: Locate an executable in PATH or project directories.
    require_executable: Like find_executable, but raise when missing.
"""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

_LOCAL_BIN_DIRS = (Path("node_modules") / ".bin", Path("bin"))


class ExecutableNotFoundError(Exception):
    """Raised when a required external tool cannot be found.

    Attributes:
        name: Name of the executable that was looked up.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Executable not found: {name}")


def platform_executable(name: str, platform: str | None = None) -> str:
    """Return the executable name for the current platform.

    Ruby and npm tools ship ``.bat``/``.cmd`` shims on Windows.

    Examples:
        >>> platform_executable("jekyll", platform="win32")
        'jekyll.bat'
        >>> platform_executable("jekyll", platform="linux")
        'jekyll'
    """
    platform = platform or sys.platform
    if platform == "win32" and not Path(name).suffix:
        return f"{name}.bat"
    return name


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or the project's local bin directories.

    Args:
        name: Name of the executable to find (e.g., 'esbuild', 'jekyll').
        project_root: Optional project root directory to search for
            local installations.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found

    if project_root is not None:
        for bin_dir in _LOCAL_BIN_DIRS:
            local = project_root / bin_dir / name
            if local.exists():
                return str(local)

    return None


def require_executable(name: str, project_root: Path | None = None) -> str:
    found = find_executable(name, project_root)
    if not found:
        raise ExecutableNotFoundError(name)
    return found
