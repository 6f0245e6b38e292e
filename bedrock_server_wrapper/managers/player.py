"""Player session bookkeeping."""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config.config import Config
from ..utils.constants import PLAYER_SEEN_LOG_FILE, PLAYER_TIME_LOG_FILE

PlayerListener = Callable[['Player'], None]


@dataclass(frozen=True)
class Player:
    """A player on the server, identified by name and XUID."""
    name: str
    xuid: str

    def __str__(self) -> str:
        return self.name


def time_played_conversion(minutes: int) -> str:
    """Format a number of minutes as ``HHh MMm``."""
    hours, remainder = divmod(minutes, 60)
    return f"{hours:02d}h {remainder:02d}m"


class PlayerManager:
    """Tracks who is online and how long everyone has played."""

    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize player manager, loading existing logs from the data folder."""
        self.config = config
        self.logger = logger
        self.clock = clock
        self.data_dir = Path(config.paths.data)
        self.time_log_path = self.data_dir / PLAYER_TIME_LOG_FILE
        self.seen_log_path = self.data_dir / PLAYER_SEEN_LOG_FILE

        self._online: Dict[Player, datetime] = {}
        self._time_log: Dict[str, int] = self._load_time_log()
        self._seen_log: Dict[str, datetime] = self._load_seen_log()

        self._connected_listeners: List[PlayerListener] = []
        self._disconnected_listeners: List[PlayerListener] = []

    @property
    def users_online(self) -> int:
        """Number of players currently connected."""
        return len(self._online)

    def add_connected_listener(self, listener: PlayerListener) -> None:
        self._connected_listeners.append(listener)

    def add_disconnected_listener(self, listener: PlayerListener) -> None:
        self._disconnected_listeners.append(listener)

    def get_played_minutes(self, player: Player) -> int:
        """Total minutes played, or -1 if the player has never been seen."""
        return self._time_log.get(player.name, -1)

    def get_last_seen(self, player: Player) -> Optional[datetime]:
        """When the player last disconnected, if ever."""
        return self._seen_log.get(player.name)

    def player_joined(self, player: Player) -> None:
        """Record a player connecting."""
        if player in self._online:
            self.logger.warning(f"Player \"{player}\" already logged in!")

        self._online[player] = self.clock()

        for listener in list(self._connected_listeners):
            listener(player)

    def player_left(self, player: Player) -> None:
        """Record a player disconnecting and update the persisted logs."""
        joined = self._online.pop(player, None)
        if joined is None:
            self.logger.warning(f"Player \"{player}\" was not logged in!")
            return

        now = self.clock()
        session_minutes = math.ceil((now - joined).total_seconds() / 60)
        self._time_log[player.name] = self._time_log.get(player.name, 0) + session_minutes
        self._seen_log[player.name] = now

        self._save_logs()

        for listener in list(self._disconnected_listeners):
            listener(player)

    def _load_time_log(self) -> Dict[str, int]:
        if not self.time_log_path.exists():
            self.logger.info("No player time log found, creating new.")
            return {}

        self.logger.info("Loading player time log from file.")
        try:
            data = json.loads(self.time_log_path.read_text(encoding="utf-8"))
            return {str(name): int(minutes) for name, minutes in data.items()}
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"Couldn't read player time log, starting fresh: {str(e)}")
            return {}

    def _load_seen_log(self) -> Dict[str, datetime]:
        if not self.seen_log_path.exists():
            self.logger.info("No player seen log found, creating new.")
            return {}

        self.logger.info("Loading player seen log from file.")
        try:
            data = json.loads(self.seen_log_path.read_text(encoding="utf-8"))
            return {str(name): datetime.fromisoformat(seen) for name, seen in data.items()}
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"Couldn't read player seen log, starting fresh: {str(e)}")
            return {}

    def _save_logs(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.time_log_path.write_text(
                json.dumps(self._time_log, indent=2), encoding="utf-8"
            )
            self.seen_log_path.write_text(
                json.dumps({name: seen.isoformat() for name, seen in self._seen_log.items()}, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            self.logger.error(f"Couldn't save player logs: {str(e)}")
