"""Main application module."""

import asyncio
import logging
import sys
import threading
import time
from typing import Optional

from .config.config import SettingsProvider
from .controllers.scanner import LineKind, LineScanner
from .controllers.server import ServerProcess, validate_server_files
from .exceptions import ConfigError, ServerError, UpdateError
from .managers import (
    BackupManager,
    BackupScheduler,
    MapGenerator,
    NotificationManager,
    Player,
    PlayerManager,
    SelfUpdater,
    ServerDownloader,
)
from .utils.constants import EXIT_INVALID_SERVER_FILES, EXIT_OK, WRAPPER_VERSION
from .utils.download import format_version, parse_version

AUTOBACKUP_USAGE = (
    "\"autobackup\" accepts the following options: "
    "\"enable\", \"disable\", \"frequency <minutes>\"."
)

LICENSES = (
    "Bedrock Server Wrapper is released under the MIT License.",
    "Third-party components:",
    " * aiohttp - Apache License 2.0",
    " * tqdm - MIT License and Mozilla Public License 2.0",
    " * toml - MIT License",
    " * PapyrusCs (downloaded on demand) - GNU General Public License v3.0",
    "Minecraft Bedrock Dedicated Server is subject to the Minecraft End User License Agreement.",
)


class BedrockServerWrapper:
    """Main application class that wires the server to the managers and the console."""

    def __init__(self, settings: SettingsProvider) -> None:
        """
        Initialize the wrapper.

        Args:
            settings: Loaded settings
        """
        self.settings = settings
        self.config = settings.config
        self.logger = logging.getLogger(f"{__name__}.BedrockServerWrapper")
        self.server_logger = logging.getLogger(f"{__name__}.server")

        self.server = ServerProcess(self.config, self.logger)
        self.scanner = LineScanner(self.logger)
        self.player_manager = PlayerManager(self.config, self.logger)
        self.map_generator = MapGenerator(self.config, self.logger)
        self.backup_manager = BackupManager(
            self.config, self.logger, self.server, self.player_manager, self.map_generator
        )
        self.notification_manager = NotificationManager(
            self.config, self.logger, self.server, self.player_manager
        )
        self.scheduler = BackupScheduler(settings, self.backup_manager, self.logger)
        self.downloader = ServerDownloader(self.config, self.logger)
        self.self_updater = SelfUpdater(self.config, self.logger)

        self.backup_manager.add_listener(self.notification_manager.on_backup_completed)
        self.player_manager.add_connected_listener(self.notification_manager.on_player_connected)
        self.player_manager.add_disconnected_listener(self.notification_manager.on_player_disconnected)
        self.server.add_output_listener(self.handle_output)
        self.server.add_error_listener(self.handle_error)

        self._server_starting: Optional[float] = None

    async def run(self) -> int:
        """Start the server and relay console input until asked to stop.

        Returns:
            Process exit code
        """
        self.print_title()
        await self.check_for_self_update()

        if not await self.ensure_server_files():
            return EXIT_INVALID_SERVER_FILES

        await self.server.start()
        self.scheduler.start()

        try:
            await self._input_loop()
        finally:
            self.scheduler.stop()
            await self.backup_manager.cancel()
            await self.server.stop()
            await self.backup_manager.wait_for_background()

        return EXIT_OK

    async def ensure_server_files(self) -> bool:
        """Download the server if its files are missing."""
        server_folder = self.config.paths.server
        executable = self.config.server.executable_name

        if validate_server_files(server_folder, executable):
            return True

        self.logger.info("Could not find required server files, downloading latest version.")
        try:
            await self.downloader.download()
        except UpdateError as e:
            self.logger.error(f"Failed to download server: {str(e)}")

        if not validate_server_files(server_folder, executable):
            self.logger.error("Server files broken / missing, please check and retry.")
            return False
        return True

    async def handle_output(self, line: str) -> None:
        """Act on a line of server standard output."""
        self.server_logger.info(line)
        scanned = self.scanner.scan(line)

        if scanned.kind is LineKind.STARTING:
            self._server_starting = time.monotonic()
        elif scanned.kind is LineKind.STARTED:
            if self._server_starting is not None:
                elapsed = (time.monotonic() - self._server_starting) * 1000
                self.logger.info(f"Server started in {elapsed:.0f} ms.")
                self._server_starting = None
        elif scanned.kind is LineKind.SAVING:
            await self.backup_manager.on_saving()
        elif scanned.kind is LineKind.BACKUP_READY:
            await self.backup_manager.on_backup_ready(scanned.line)
        elif scanned.kind is LineKind.PLAYER_CONNECTED:
            self.player_manager.player_joined(Player(*scanned.groups))
        elif scanned.kind is LineKind.PLAYER_DISCONNECTED:
            self.player_manager.player_left(Player(*scanned.groups))

    async def handle_error(self, line: str) -> None:
        """Log a line of server standard error."""
        self.server_logger.error(line)

    async def handle_command(self, text: str) -> bool:
        """Dispatch one line of operator input.

        Returns:
            False when the wrapper should shut down
        """
        command = text.strip()
        if not command:
            return True

        lowered = command.lower()

        if lowered == "stop":
            return False

        if lowered == "values":
            self.print_server_values()
        elif lowered == "help":
            self.print_help()
        elif lowered == "licensing":
            self.print_licenses()
        elif lowered == "update":
            await self.check_for_updates()
        elif lowered.startswith("autobackup"):
            self.handle_autobackup(command)
        elif not self.server.is_running:
            self.logger.error("Unable to send input to process: not running.")
        elif lowered == "backup":
            await self.backup_manager.request_backup(manual=True)
        else:
            await self.server.send_input(command)

        return True

    def handle_autobackup(self, command: str) -> None:
        """Change automatic backup settings from the console."""
        parts = command.split()
        if len(parts) < 2:
            self.logger.error(AUTOBACKUP_USAGE)
            return

        option = parts[1].lower()
        try:
            if option == "enable":
                self.settings.automatic_backup_enabled = True
            elif option == "disable":
                self.settings.automatic_backup_enabled = False
            elif option == "frequency":
                if len(parts) != 3:
                    self.logger.error(
                        "\"autobackup frequency\" requires an argument for the number of minutes between backups."
                    )
                    return
                try:
                    self.settings.automatic_backup_frequency = int(parts[2])
                except ValueError:
                    self.logger.error(f"Could not convert \"{parts[2]}\" to a positive integer.")
                    return
            else:
                self.logger.error(AUTOBACKUP_USAGE)
                return
        except ConfigError as e:
            self.logger.error(f"Couldn't save settings: {str(e)}")

    async def check_for_updates(self) -> None:
        """Update the server if a newer version has been released."""
        self.logger.info("Checking for latest Bedrock server version...")
        latest = await self.downloader.find_latest_version()
        current = parse_version(self.scanner.server_values.get("ServerVersion", ""))

        if latest is None or current is None:
            self.logger.error("Unable to determine server version, update check aborted.")
            return

        if current >= latest:
            self.logger.info("Server is up-to-date!")
            return

        self.logger.info(f"Found new version {format_version(latest)}, stopping server and updating.")
        await self.backup_manager.cancel()
        await self.server.stop()

        try:
            await self.downloader.download()
        except UpdateError as e:
            self.logger.error(f"Server update failed: {str(e)}")

        self.scanner.server_values.clear()
        try:
            await self.server.start()
        except ServerError as e:
            self.logger.error(f"Couldn't restart server: {str(e)}")

    async def check_for_self_update(self) -> None:
        update_available, remote, url = await self.self_updater.check_for_update()
        if update_available and remote is not None:
            self.logger.info(f"A new version of the wrapper is available: {format_version(remote)} ({url})")

    def print_title(self) -> None:
        self.logger.info("----------------------------------------------")
        self.logger.info("  Minecraft Bedrock Dedicated Server Wrapper  ")
        self.logger.info(f"  Version: {WRAPPER_VERSION}")
        self.logger.info("----------------------------------------------")

    def print_server_values(self) -> None:
        self.logger.info("Server values:")
        for name, value in self.scanner.server_values.items():
            self.logger.info(f" * {name} : {value}")

    def print_help(self) -> None:
        self.logger.info("Wrapper commands:")
        self.logger.info("* autobackup : Allows you to change automatic backup settings.")
        self.logger.info("* backup : Performs a backup.")
        self.logger.info("* licensing : Prints license information.")
        self.logger.info("* stop : Stops the server and shuts down the wrapper.")
        self.logger.info("* update : Checks for new Bedrock server version, and updates if available.")
        self.logger.info("* values : Prints values reported by the server.")
        self.logger.info("Use \"help <number>\" for Bedrock server help pages")

    def print_licenses(self) -> None:
        for line in LICENSES:
            self.logger.info(line)

    async def _input_loop(self) -> None:
        queue = self._start_console_reader()
        next_line = asyncio.ensure_future(queue.get())
        server_exit = asyncio.ensure_future(self.server.wait())

        try:
            while True:
                done, _ = await asyncio.wait(
                    {next_line, server_exit}, return_when=asyncio.FIRST_COMPLETED
                )

                if server_exit in done:
                    if self.server.is_running:
                        # Restarted by an update.
                        server_exit = asyncio.ensure_future(self.server.wait())
                        continue
                    self.logger.error(f"Server process exited with code {server_exit.result()}.")
                    return

                line = next_line.result()
                if line is None or not await self.handle_command(line):
                    return
                next_line = asyncio.ensure_future(queue.get())
        finally:
            next_line.cancel()
            server_exit.cancel()

    def _start_console_reader(self) -> "asyncio.Queue[Optional[str]]":
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

        def read_console() -> None:
            try:
                for line in sys.stdin:
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except RuntimeError:
                # Event loop already closed.
                return

        threading.Thread(target=read_console, name="console-input", daemon=True).start()
        return queue
