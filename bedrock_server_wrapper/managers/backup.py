"""World backups: the save-hold handshake, file staging, archiving and retention."""

import asyncio
import inspect
import logging
import re
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Set, Tuple

from ..config.config import Config, SettingsProvider
from ..controllers.server import ServerConsoleProtocol
from ..exceptions import BackupError
from ..utils.constants import (
    BACKUP_NAME_PATTERN,
    BACKUP_PREFIX,
    BACKUP_TIMESTAMP_FORMAT,
    SAVE_HOLD,
    SAVE_QUERY,
    SAVE_RESUME,
    STAGING_DIR_PREFIX,
)
from ..utils.files import delete_directory
from .player import Player, PlayerManager

BACKUP_NAME_RE = re.compile(BACKUP_NAME_PATTERN)


class BackupState(Enum):
    """Stages of the backup handshake."""
    IDLE = "idle"
    AWAITING_QUIESCE = "awaiting_quiesce"
    QUIESCED = "quiesced"
    STAGING = "staging"
    ARCHIVING = "archiving"
    COMPLETED = "completed"
    FAILED = "failed"


ARMED_STATES = (BackupState.AWAITING_QUIESCE, BackupState.QUIESCED)


@dataclass(frozen=True)
class BackupRequest:
    """Files the server reports as safe to copy, with the byte count to copy of each."""
    files: Tuple[Tuple[str, int], ...]

    @classmethod
    def parse(cls, payload: str) -> 'BackupRequest':
        """Parse a ``file1:bytes1, file2:bytes2, ...`` line.

        Raises:
            BackupError: If an entry isn't a ``name:count`` pair
        """
        files: List[Tuple[str, int]] = []

        for entry in payload.split(","):
            entry = entry.strip()
            if not entry:
                continue

            name, separator, count = entry.rpartition(":")
            if not separator or not name.strip():
                raise BackupError(f"Malformed backup entry: \"{entry}\"")

            try:
                byte_count = int(count)
            except ValueError as e:
                raise BackupError(f"Invalid byte count in backup entry: \"{entry}\"") from e

            if byte_count < 0:
                raise BackupError(f"Negative byte count in backup entry: \"{entry}\"")

            files.append((name.strip(), byte_count))

        if not files:
            raise BackupError("Backup request didn't list any files")

        return cls(tuple(files))


@dataclass
class BackupSession:
    """The backup currently in flight."""
    manual: bool
    started: datetime
    staging_dir: Optional[Path] = None


@dataclass(frozen=True)
class BackupCompleted:
    """Outcome of a backup attempt."""
    backup_file: Optional[str]
    backup_duration: timedelta
    successful: bool = True
    manual: bool = False


class MapGeneratorProtocol(Protocol):
    """Renders a map from a staged copy of the world."""
    async def generate_map(self, staging_dir: Path) -> None: ...


BackupListener = Callable[[BackupCompleted], Any]


def stage_files(
    request: BackupRequest,
    world_root: Path,
    staging_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Copy the reported prefix of every requested file into the staging directory.

    Raises:
        BackupError: On the first file that can't be fully copied
    """
    root = world_root.resolve()

    for relative, byte_count in request.files:
        source = (world_root / relative).resolve()
        if not source.is_relative_to(root):
            raise BackupError(f"Refusing to copy file outside the world folder: {relative}")

        target = staging_dir / relative
        if logger:
            logger.info(f" - Copying {source}...")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(source, "rb") as src:
                data = src.read(byte_count)
            if len(data) < byte_count:
                raise BackupError(
                    f"Truncated read of {relative}: expected {byte_count} bytes, got {len(data)}"
                )
            target.write_bytes(data)
        except OSError as e:
            raise BackupError(f"Couldn't copy {relative}: {type(e).__name__}: {str(e)}") from e


def backup_file_name(timestamp: datetime) -> str:
    """Archive name for a backup finished at ``timestamp``."""
    return f"{BACKUP_PREFIX}{timestamp.strftime(BACKUP_TIMESTAMP_FORMAT)}.zip"


def create_archive(staging_dir: Path, backup_dir: Path, timestamp: datetime) -> Path:
    """Zip the staging directory into the backup folder.

    If an archive with the same second already exists the timestamp is moved
    forward one second at a time until the name is free.

    Raises:
        BackupError: If the archive can't be written
    """
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BackupError(f"Couldn't create backup folder {backup_dir}: {str(e)}") from e

    archive = backup_dir / backup_file_name(timestamp)
    while archive.exists():
        timestamp += timedelta(seconds=1)
        archive = backup_dir / backup_file_name(timestamp)

    try:
        with zipfile.ZipFile(archive, "x", compression=zipfile.ZIP_DEFLATED) as zf:
            for file in sorted(staging_dir.rglob("*")):
                if file.is_file():
                    zf.write(file, file.relative_to(staging_dir).as_posix())
    except FileExistsError as e:
        raise BackupError(f"Backup archive appeared while writing: {archive.name}") from e
    except (OSError, zipfile.BadZipFile) as e:
        archive.unlink(missing_ok=True)
        raise BackupError(f"Couldn't write backup archive {archive.name}: {str(e)}") from e

    return archive


def get_sorted_backups(backup_dir: Path) -> List[Path]:
    """Get backup archives sorted by modification time (newest first)."""
    if not backup_dir.is_dir():
        return []

    backups: List[Tuple[float, Path]] = []
    for path in backup_dir.glob(f"{BACKUP_PREFIX}*.zip"):
        if not BACKUP_NAME_RE.fullmatch(path.name) or not path.is_file():
            continue
        try:
            backups.append((path.stat().st_mtime, path))
        except FileNotFoundError:
            # Deleted since the glob.
            continue

    return [path for _, path in sorted(backups, key=lambda item: item[0], reverse=True)]


def prune_archives(backup_dir: Path, retention_count: int, logger: logging.Logger) -> List[Path]:
    """Keep the newest ``retention_count + 1`` archives and delete the rest.

    Returns:
        The archives that were deleted
    """
    removed: List[Path] = []

    for backup_path in get_sorted_backups(backup_dir)[retention_count + 1:]:
        try:
            backup_path.unlink()
            removed.append(backup_path)
            logger.info(f"Removed old backup: {backup_path.name}")
        except PermissionError:
            logger.warning(f"Permission denied deleting backup: {backup_path.name}")
        except OSError as e:
            logger.error(f"Error deleting backup {backup_path.name}: {str(e)}")

    return removed


class BackupManager:
    """Runs the backup handshake against the server.

    A backup is armed by :meth:`request_backup`, which sends ``save hold``.
    The server answers with ``Saving...`` (:meth:`on_saving`), after which
    ``save query`` is sent every ``query_interval`` seconds until the server
    lists the files that are safe to copy (:meth:`on_backup_ready`). Those are
    staged and zipped, then ``save resume`` is sent whatever the outcome.
    """

    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        server: ServerConsoleProtocol,
        player_manager: Optional[PlayerManager] = None,
        map_generator: Optional[MapGeneratorProtocol] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize backup manager."""
        self.config = config
        self.logger = logger
        self.server = server
        self.player_manager = player_manager
        self.map_generator = map_generator
        self.clock = clock
        self.backup_dir = Path(config.paths.backups)
        self.world_root = config.paths.worlds

        self.state = BackupState.IDLE
        self.session: Optional[BackupSession] = None
        self._lock = threading.Lock()
        self._query_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[BackupListener] = []
        self._player_online_since_last_backup = False

        if player_manager is not None:
            player_manager.add_connected_listener(self.player_joined)

        # Ensure backup directory exists
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_armed(self) -> bool:
        """Whether a backup has been requested and is waiting for the server."""
        return self.state in ARMED_STATES

    def add_listener(self, listener: BackupListener) -> None:
        """Register a callback (plain or coroutine) for completed backups."""
        self._listeners.append(listener)

    def player_joined(self, player: Player) -> None:
        self._player_online_since_last_backup = True

    async def request_backup(self, manual: bool = True) -> bool:
        """Arm a backup and ask the server to hold saving.

        Returns:
            True if the backup was armed, False if it was skipped or one is already running
        """
        with self._lock:
            if self.state is not BackupState.IDLE:
                self.logger.warning("A backup is already in progress, ignoring request.")
                return False

            if not self.server.is_running:
                self.logger.warning("Server is not running, ignoring backup request.")
                return False

            if not manual and not self._players_seen():
                self.logger.info("Skipped scheduled backup, no users have been online.")
                return False

            self.session = BackupSession(manual=manual, started=self.clock())
            self.state = BackupState.AWAITING_QUIESCE

        self.logger.info(f"Started {'manual' if manual else 'scheduled'} backup.")
        await self.server.send_input(SAVE_HOLD)
        return True

    async def on_saving(self) -> None:
        """The server acknowledged ``save hold``; start polling with ``save query``."""
        with self._lock:
            armed = self.state is BackupState.AWAITING_QUIESCE
            if armed:
                self.state = BackupState.QUIESCED

        if not armed:
            self.logger.info("Server is saving but no backup was requested.")
            return

        self.logger.info("Backup started...")
        await self.server.say("Backup started.")
        self._start_query_loop()

    async def on_backup_ready(self, payload: str) -> Optional[BackupCompleted]:
        """Stage and archive the files listed by the server.

        Returns:
            The completion event, or None if no backup was armed
        """
        self._stop_query_loop()

        with self._lock:
            session = self.session
            armed = self.state in ARMED_STATES and session is not None
            if armed:
                self.state = BackupState.STAGING

        if not armed or session is None:
            self.logger.info("Server reported backup data but no backup was requested, ignoring.")
            return None

        try:
            archive = await self._stage_and_archive(session, payload)
        except asyncio.CancelledError:
            self.logger.warning("Backup cancelled while copying files.")
            await self._finish(session, successful=False)
            raise

        if archive is None:
            return await self._finish(session, successful=False)

        try:
            prune_archives(self.backup_dir, self.config.backup.retention_count, self.logger)
        except OSError as e:
            self.logger.error(f"Couldn't prune old backups: {str(e)}")

        if session.staging_dir is not None:
            try:
                self._hand_off_staging(session.staging_dir)
            except Exception as e:
                self.logger.error(f"Couldn't start map generation: {type(e).__name__}: {str(e)}")
                delete_directory(session.staging_dir, self.logger)

        return await self._finish(session, successful=True, archive=archive)

    async def cancel(self) -> None:
        """Abandon an armed backup, releasing the server's save hold."""
        self._stop_query_loop()

        with self._lock:
            armed = self.state in ARMED_STATES
            if armed:
                self.state = BackupState.IDLE
                self.session = None

        if armed:
            self.logger.warning("Cancelled pending backup.")
            await self.server.send_input(SAVE_RESUME)

    async def wait_for_background(self) -> None:
        """Wait for map generation started by earlier backups."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _stage_and_archive(self, session: BackupSession, payload: str) -> Optional[Path]:
        """Copy the listed files and zip them.

        Returns:
            The new archive, or None if the backup failed
        """
        try:
            staging_dir = Path(tempfile.mkdtemp(prefix=STAGING_DIR_PREFIX))
        except OSError as e:
            self.logger.error(f"Backup failed: couldn't create staging directory: {str(e)}")
            return None

        session.staging_dir = staging_dir

        try:
            request = BackupRequest.parse(payload)

            self.logger.info("Copying files...")
            await asyncio.to_thread(stage_files, request, self.world_root, staging_dir, self.logger)

            self._set_state(BackupState.ARCHIVING)
            self.logger.info("Compressing backup...")
            return await asyncio.to_thread(create_archive, staging_dir, self.backup_dir, self.clock())
        except Exception as e:
            self.logger.error(f"Backup failed: {type(e).__name__}: {str(e)}")
            delete_directory(staging_dir, self.logger)
            return None
        except asyncio.CancelledError:
            delete_directory(staging_dir, self.logger)
            raise

    def _players_seen(self) -> bool:
        if self._player_online_since_last_backup:
            return True
        return self.player_manager is not None and self.player_manager.users_online > 0

    def _set_state(self, state: BackupState) -> None:
        with self._lock:
            self.state = state

    def _start_query_loop(self) -> None:
        self._stop_query_loop()
        self._query_task = asyncio.get_running_loop().create_task(self._query_loop())

    def _stop_query_loop(self) -> None:
        if self._query_task is not None and not self._query_task.done():
            self._query_task.cancel()
        self._query_task = None

    async def _query_loop(self) -> None:
        while True:
            await self.server.send_input(SAVE_QUERY)
            await asyncio.sleep(self.config.backup.query_interval)

    def _hand_off_staging(self, staging_dir: Path) -> None:
        if self.map_generator is None or not self.config.papyrus.enabled:
            delete_directory(staging_dir, self.logger)
            return

        task = asyncio.get_running_loop().create_task(
            self._generate_map(self.map_generator, staging_dir)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _generate_map(self, map_generator: MapGeneratorProtocol, staging_dir: Path) -> None:
        try:
            await map_generator.generate_map(staging_dir)
        except Exception as e:
            self.logger.error(f"Map generation failed: {type(e).__name__}: {str(e)}")
        finally:
            delete_directory(staging_dir, self.logger)

    async def _finish(
        self,
        session: BackupSession,
        successful: bool,
        archive: Optional[Path] = None,
    ) -> BackupCompleted:
        duration = self.clock() - session.started if successful else timedelta(0)
        self._set_state(BackupState.COMPLETED if successful else BackupState.FAILED)

        await self.server.send_input(SAVE_RESUME)

        with self._lock:
            self.session = None
            self.state = BackupState.IDLE
            self._player_online_since_last_backup = (
                self.player_manager is not None and self.player_manager.users_online > 0
            )

        event = BackupCompleted(
            backup_file=str(archive) if archive else None,
            backup_duration=duration,
            successful=successful,
            manual=session.manual,
        )

        if successful:
            self.logger.info(
                f"Backup completed: {archive}, took {duration.total_seconds():.1f}s."
            )

        await self._notify(event)
        return event

    async def _notify(self, event: BackupCompleted) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.exception(f"Backup listener failed: {str(e)}")


class BackupScheduler:
    """Fires scheduled backups every ``automatic_frequency`` minutes."""

    def __init__(
        self,
        settings: SettingsProvider,
        backup_manager: BackupManager,
        logger: logging.Logger,
    ) -> None:
        self.settings = settings
        self.backup_manager = backup_manager
        self.logger = logger
        self._task: Optional[asyncio.Task] = None
        settings.add_change_listener(self.reschedule)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer if automatic backups are enabled."""
        if not self.settings.automatic_backup_enabled:
            self.logger.info("Automatic backups are disabled.")
            return

        self.logger.info(
            f"Automatic backups every {self.settings.automatic_backup_frequency} minutes."
        )
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def reschedule(self) -> None:
        """Restart the timer with the current settings."""
        self.stop()
        self.start()

    async def trigger(self) -> bool:
        """Request a scheduled backup."""
        return await self.backup_manager.request_backup(manual=False)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.settings.automatic_backup_frequency * 60)
            await self.trigger()
