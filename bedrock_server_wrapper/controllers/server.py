"""Server process controller module."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol

from ..config.config import Config
from ..exceptions import ServerError
from ..utils.constants import STOP_COMMAND, STREAM_LIMIT
from ..utils.files import is_linux

LineListener = Callable[[str], Awaitable[None]]


class ServerConsoleProtocol(Protocol):
    """Protocol defining the console interface other components talk to."""
    @property
    def is_running(self) -> bool: ...

    async def send_input(self, text: str) -> None: ...
    async def say(self, message: str) -> None: ...


def validate_server_files(server_folder: str, executable: str) -> bool:
    """Check that the server executable is present."""
    return (Path(server_folder) / executable).is_file()


class ServerProcess:
    """Controls the Bedrock server process and relays its console."""

    def __init__(self, config: Config, logger: Optional[logging.Logger] = None) -> None:
        """
        Initialize the server process controller.

        Args:
            config: Configuration object
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.process: Optional[asyncio.subprocess.Process] = None
        self._readers: List[asyncio.Task] = []
        self._output_listeners: List[LineListener] = []
        self._error_listeners: List[LineListener] = []

    @property
    def is_running(self) -> bool:
        """Whether the server process is alive."""
        return self.process is not None and self.process.returncode is None

    @property
    def executable(self) -> Path:
        return Path(self.config.paths.server) / self.config.server.executable_name

    def add_output_listener(self, listener: LineListener) -> None:
        """Register a coroutine called with every line of standard output."""
        self._output_listeners.append(listener)

    def add_error_listener(self, listener: LineListener) -> None:
        """Register a coroutine called with every line of standard error."""
        self._error_listeners.append(listener)

    async def start(self) -> None:
        """
        Start the Bedrock server.

        Raises:
            ServerError: If the server is already running or can't be launched
        """
        if self.is_running:
            raise ServerError("Server process is already running, can't start again.")

        env = os.environ.copy()
        if is_linux():
            env["LD_LIBRARY_PATH"] = str(Path(self.config.paths.server).resolve())

        self.logger.info("Starting server...")
        try:
            self.process = await asyncio.create_subprocess_exec(
                str(self.executable.resolve()),
                cwd=self.config.paths.server,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ServerError(f"Couldn't launch {self.executable}: {str(e)}") from e

        self._readers = [
            asyncio.create_task(self._read_stream(self.process.stdout, self._output_listeners)),
            asyncio.create_task(self._read_stream(self.process.stderr, self._error_listeners)),
        ]

    async def stop(self) -> None:
        """Ask the server to stop, killing it if it doesn't exit in time."""
        process = self.process
        if process is None or process.returncode is not None:
            self.logger.warning("Server is not running")
            return

        await self.send_input(STOP_COMMAND)
        self.logger.info("Shutting down server...")

        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.server.stop_timeout)
        except asyncio.TimeoutError:
            self.logger.error("Could not exit server process. Killing.")
            process.kill()
            await process.wait()

        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers = []

    async def wait(self) -> int:
        """Wait for the server process to exit and return its exit code."""
        if self.process is None:
            return 0
        return await self.process.wait()

    async def send_input(self, text: str) -> None:
        """Write a command to the server's console."""
        process = self.process
        if process is None or process.returncode is not None or process.stdin is None:
            self.logger.error("Unable to send input to process: not running.")
            return

        try:
            process.stdin.write(f"{text}\n".encode("utf-8"))
            await process.stdin.drain()
        except OSError as e:
            self.logger.error(f"Unable to send input to process: {str(e)}")

    async def say(self, message: str) -> None:
        """Broadcast a chat message to everyone on the server."""
        await self.send_input(f"say {message}")

    async def _read_stream(
        self,
        stream: Optional[asyncio.StreamReader],
        listeners: List[LineListener],
    ) -> None:
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Overlong line, the reader has already skipped past it.
                self.logger.error(f"Discarded server output line: {str(e)}")
                continue
            if not raw:
                break

            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue

            for listener in listeners:
                try:
                    await listener(line)
                except Exception as e:
                    self.logger.exception(f"Error handling server output \"{line}\": {str(e)}")
