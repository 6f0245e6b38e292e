"""Filesystem and platform helpers."""

import logging
import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Optional, Union

from .constants import LINUX_SERVER_EXECUTABLE, WINDOWS_SERVER_EXECUTABLE

PathLike = Union[str, Path]


def is_linux() -> bool:
    """Check whether we're running on Linux."""
    return sys.platform.startswith("linux")


def server_executable_name() -> str:
    """Get the filename of the Bedrock server executable for this platform."""
    return WINDOWS_SERVER_EXECUTABLE if sys.platform == "win32" else LINUX_SERVER_EXECUTABLE


def delete_directory(directory: PathLike, logger: Optional[logging.Logger] = None) -> bool:
    """Attempt to delete a directory tree.

    Returns:
        True if the directory was removed, False if it didn't exist or couldn't be deleted.
    """
    path = Path(directory)
    if not path.is_dir():
        return False

    try:
        shutil.rmtree(path)
        return True
    except OSError as e:
        if logger:
            logger.error(f"Couldn't delete files/folder {path}: {type(e).__name__} - {e}")
        return False


def make_executable(path: PathLike, logger: Optional[logging.Logger] = None) -> bool:
    """Add the executable bits to a file (``chmod +x``)."""
    target = Path(path)
    if not target.is_file():
        if logger:
            logger.error(f"File \"{target}\" does not exist.")
        return False

    if logger:
        logger.info(f"Making \"{target}\" executable.")

    mode = target.stat().st_mode
    os.chmod(target, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return True
