"""Map rendering of backed up worlds with PapyrusCs."""

import asyncio
import logging
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

from ..config.config import Config
from ..exceptions import UpdateError
from ..utils.constants import PAPYRUS_MISSING_DIMENSION_CODES
from ..utils.download import create_session, download_file, extract_zip, fetch_json, find_release_asset
from ..utils.files import delete_directory, is_linux, make_executable

DIMENSIONS = (0, 1, 2)


class MapGenerator:
    """Renders the staged world copy of a backup with PapyrusCs."""

    def __init__(self, config: Config, logger: logging.Logger) -> None:
        self.config = config
        self.logger = logger
        self.papyrus_dir = Path(config.papyrus.folder)

    @property
    def executable(self) -> Path:
        return self.papyrus_dir / ("PapyrusCs.exe" if sys.platform == "win32" else "PapyrusCs")

    @property
    def is_installed(self) -> bool:
        return self.executable.is_file()

    async def generate_map(self, staging_dir: Path) -> None:
        """Render every dimension of the world found in ``staging_dir``.

        Failures are logged, never raised.
        """
        if not self.config.papyrus.enabled:
            return

        self.logger.info("Map generation starting.")

        world_dir = find_world_folder(staging_dir)
        if world_dir is None:
            self.logger.error("World folder could not be found.")
            return

        if not self.is_installed:
            try:
                await self.install()
            except (UpdateError, OSError, zipfile.BadZipFile) as e:
                self.logger.error(f"Could not install PapyrusCs: {type(e).__name__}: {str(e)}")
                return

        for dimension in DIMENSIONS:
            await self._render_dimension(world_dir, dimension)

        self.logger.info("Map generation done.")

        if self.config.papyrus.post_run_command:
            await self._run_post_command()

    async def install(self) -> None:
        """Download and unpack the latest PapyrusCs release.

        Raises:
            UpdateError: If no suitable release can be downloaded
        """
        suffix = "-linux64.zip" if is_linux() else "-win64.zip"

        async with create_session() as session:
            release = await fetch_json(session, self.config.papyrus.release_url)
            url = find_release_asset(release, suffix)
            if url is None:
                raise UpdateError("Could not find the latest release of PapyrusCs.")

            with tempfile.TemporaryDirectory() as tmp:
                archive = Path(tmp) / "papyruscs.zip"
                await download_file(session, url, archive, "Downloading PapyrusCs")

                delete_directory(self.papyrus_dir, self.logger)
                await asyncio.to_thread(extract_zip, archive, self.papyrus_dir)

        if is_linux():
            make_executable(self.executable, self.logger)

    async def _render_dimension(self, world_dir: Path, dimension: int) -> None:
        self.logger.info(f"Generating map for dimension {dimension}.")

        try:
            process = await asyncio.create_subprocess_exec(
                str(self.executable.resolve()),
                "-w", str(world_dir),
                "-o", str(self.config.papyrus.output_path),
                "--dim", str(dimension),
                "--htmlfile", "index.html",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            exit_code = await process.wait()
        except OSError as e:
            self.logger.error(f"Couldn't run PapyrusCs: {str(e)}")
            return

        if exit_code == 0:
            return
        if exit_code in PAPYRUS_MISSING_DIMENSION_CODES:
            self.logger.warning("Couldn't generate map for non-existent dimension.")
        else:
            self.logger.error(f"Map generation failed with exit code {exit_code}.")

    async def _run_post_command(self) -> None:
        try:
            process = await asyncio.create_subprocess_shell(self.config.papyrus.post_run_command)
            exit_code = await process.wait()
        except OSError as e:
            self.logger.error(f"Map generation post-run command failed: {str(e)}")
            return
        self.logger.info(f"Map generation post-run command exited with {exit_code}.")


def find_world_folder(staging_dir: Path) -> Optional[Path]:
    """The folder holding ``level.dat`` inside a staged backup."""
    for level_dat in sorted(staging_dir.rglob("level.dat")):
        return level_dat.parent
    return None
