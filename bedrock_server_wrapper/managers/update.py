"""Bedrock server downloads and wrapper self-update checks."""

import asyncio
import logging
import re
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..config.config import Config
from ..exceptions import UpdateError
from ..utils.constants import PROTECTED_SERVER_FILES, WRAPPER_VERSION
from ..utils.download import (
    create_session,
    download_file,
    extract_zip,
    fetch_json,
    find_release_asset,
    format_version,
    parse_version,
)
from ..utils.files import is_linux, make_executable

SERVER_ZIP_RE = re.compile(r"bedrock-server-(\d+(?:\.\d+)+)\.zip")

Version = Tuple[int, ...]


def server_download_type() -> str:
    """Download type of the dedicated server build for this platform."""
    return "serverBedrockWindows" if sys.platform == "win32" else "serverBedrockLinux"


class ServerDownloader:
    """Finds and installs the latest Bedrock dedicated server."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        self.config = config
        self.logger = logger

    async def find_latest(self) -> Tuple[Version, str]:
        """Look up the latest server release for this platform.

        Returns:
            The version and its download URL

        Raises:
            UpdateError: If the release can't be determined
        """
        async with create_session() as session:
            data = await fetch_json(session, self.config.updates.server_links_url)

        url = _find_download_url(data, server_download_type())
        if url is None:
            raise UpdateError(f"No {server_download_type()} download listed")

        match = SERVER_ZIP_RE.search(url)
        if not match:
            raise UpdateError(f"Couldn't determine server version from {url}")

        return tuple(int(part) for part in match.group(1).split(".")), url

    async def find_latest_version(self) -> Optional[Version]:
        """Latest server version, or None if it couldn't be determined."""
        try:
            version, _ = await self.find_latest()
            return version
        except UpdateError as e:
            self.logger.error(f"Couldn't determine latest server version: {str(e)}")
            return None

    async def download(self, target_dir: Optional[Path] = None) -> None:
        """Download and unpack the latest server, keeping existing settings files.

        Raises:
            UpdateError: If the download or extraction fails
        """
        target = target_dir or Path(self.config.paths.server)
        version, url = await self.find_latest()
        self.logger.info(f"Downloading Bedrock server {format_version(version)}...")

        with tempfile.TemporaryDirectory() as tmp:
            archive = Path(tmp) / "bedrock-server.zip"
            async with create_session() as session:
                await download_file(session, url, archive, "Downloading server")

            self.logger.info("Download complete.")
            try:
                count = await asyncio.to_thread(extract_zip, archive, target, PROTECTED_SERVER_FILES)
            except (OSError, zipfile.BadZipFile) as e:
                raise UpdateError(f"Couldn't unpack server files: {str(e)}") from e

        self.logger.info(f"Unzipped {count} files.")

        if is_linux():
            make_executable(target / self.config.server.executable_name, self.logger)


class SelfUpdater:
    """Checks GitHub for a newer release of the wrapper."""

    def __init__(self, config: Config, logger: logging.Logger, current_version: str = WRAPPER_VERSION) -> None:
        self.config = config
        self.logger = logger
        self.current_version = current_version

    async def check_for_update(self) -> Tuple[bool, Optional[Version], Optional[str]]:
        """Compare the latest release against the running version.

        Returns:
            Whether an update is available, the remote version and its download URL
        """
        suffix = "_linux-x64.zip" if is_linux() else "_win-x64.zip"

        try:
            async with create_session() as session:
                release: Dict[str, Any] = await fetch_json(session, self.config.updates.self_update_url)
        except UpdateError as e:
            self.logger.warning(f"Could not find the latest release: {str(e)}")
            return False, None, None

        url = find_release_asset(release, suffix)
        remote = parse_version(str(release.get("tag_name", "")))
        local = parse_version(self.current_version)

        if remote is None or local is None:
            self.logger.warning("Could not determine the latest release version.")
            return False, None, url

        return remote > local, remote, url


def _find_download_url(data: Any, download_type: str) -> Optional[str]:
    try:
        links = data["result"]["links"]
    except (KeyError, TypeError):
        return None

    for link in links:
        if link.get("downloadType") == download_type:
            return link.get("downloadUrl")
    return None
