"""Configuration handling module."""

import logging
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import ConfigError
from ..utils import toml_utils
from ..utils.constants import (
    BEDROCK_LINKS_URL,
    DEFAULT_BACKUP_FREQUENCY,
    DEFAULT_QUERY_INTERVAL,
    DEFAULT_RETENTION_COUNT,
    PAPYRUS_RELEASE_URL,
    SELF_UPDATE_URL,
)
from ..utils.files import server_executable_name

logger = logging.getLogger(__name__)


@dataclass
class PathsConfig:
    """Paths configuration."""
    server: str = "Server"
    backups: str = "Backups"
    logs: str = "logs/bedrock-server-wrapper.log"
    data: str = "."

    @property
    def worlds(self) -> Path:
        """Folder the server keeps its world data in."""
        return Path(self.server) / "worlds"


@dataclass
class ServerConfig:
    """Server configuration."""
    executable: str = ""
    stop_timeout: int = 5

    @property
    def executable_name(self) -> str:
        """Configured executable, or the platform default."""
        return self.executable or server_executable_name()


@dataclass
class BackupConfig:
    """Backup configuration."""
    automatic_enabled: bool = True
    automatic_frequency: int = DEFAULT_BACKUP_FREQUENCY
    retention_count: int = DEFAULT_RETENTION_COUNT
    query_interval: float = DEFAULT_QUERY_INTERVAL


@dataclass
class PapyrusConfig:
    """PapyrusCs map generation configuration."""
    enabled: bool = True
    folder: str = "PapyrusCs"
    output_folder: str = ""
    post_run_command: str = ""
    release_url: str = PAPYRUS_RELEASE_URL

    @property
    def output_path(self) -> Path:
        """Folder the rendered map is written to."""
        return Path(self.output_folder) if self.output_folder else Path(self.folder) / "GeneratedMap"


@dataclass
class NotificationsConfig:
    """Notifications configuration."""
    discord_webhook: str = ""
    welcome_delay: float = 5


@dataclass
class UpdatesConfig:
    """Update endpoints configuration."""
    server_links_url: str = BEDROCK_LINKS_URL
    self_update_url: str = SELF_UPDATE_URL


@dataclass
class Config:
    """Main configuration class."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    papyrus: PapyrusConfig = field(default_factory=PapyrusConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    updates: UpdatesConfig = field(default_factory=UpdatesConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create Config instance from dictionary, filling in defaults."""
        try:
            config = cls(
                paths=PathsConfig(**data.get('paths', {})),
                server=ServerConfig(**data.get('server', {})),
                backup=BackupConfig(**data.get('backup', {})),
                papyrus=PapyrusConfig(**data.get('papyrus', {})),
                notifications=NotificationsConfig(**data.get('notifications', {})),
                updates=UpdatesConfig(**data.get('updates', {})),
            )
        except TypeError as e:
            raise ConfigError(f"Unknown configuration key: {str(e)}") from e

        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary suitable for writing as TOML."""
        return asdict(self)

    def validate(self) -> None:
        """Replace values of the wrong type or out of range with their defaults."""
        defaults = Config()

        for section, name, kinds, in_range in VALIDATED_SETTINGS:
            value = getattr(getattr(self, section), name)
            default = getattr(getattr(defaults, section), name)

            if _is_instance(value, kinds) and in_range(value):
                continue

            logger.warning(f"Invalid {section}.{name} value {value!r}, using {default!r}")
            setattr(getattr(self, section), name, default)


def _is_instance(value: Any, kinds: Tuple[type, ...]) -> bool:
    """Type check that doesn't accept booleans as numbers."""
    if isinstance(value, bool):
        return bool in kinds
    return isinstance(value, kinds)


# (section, field, accepted types, range check)
VALIDATED_SETTINGS: Tuple[Tuple[str, str, Tuple[type, ...], Callable[[Any], bool]], ...] = (
    ("backup", "automatic_enabled", (bool,), lambda value: True),
    ("backup", "automatic_frequency", (int,), lambda value: value > 0),
    ("backup", "retention_count", (int,), lambda value: value >= 0),
    ("backup", "query_interval", (int, float), lambda value: value > 0),
    ("server", "stop_timeout", (int, float), lambda value: value > 0),
    ("notifications", "welcome_delay", (int, float), lambda value: value >= 0),
    ("papyrus", "enabled", (bool,), lambda value: True),
)


SettingsListener = Callable[[], None]


class SettingsProvider:
    """Owns the loaded configuration and persists changes made at runtime."""

    def __init__(self, config: Config, config_path: Optional[str] = None) -> None:
        self.config = config
        self.config_path = config_path
        self._listeners: List[SettingsListener] = []

    def add_change_listener(self, listener: SettingsListener) -> None:
        """Register a callback invoked when automatic backup settings change."""
        self._listeners.append(listener)

    @property
    def automatic_backup_enabled(self) -> bool:
        return self.config.backup.automatic_enabled

    @automatic_backup_enabled.setter
    def automatic_backup_enabled(self, value: bool) -> None:
        if self.config.backup.automatic_enabled == value:
            return
        self.config.backup.automatic_enabled = value
        self._changed()

    @property
    def automatic_backup_frequency(self) -> int:
        return self.config.backup.automatic_frequency

    @automatic_backup_frequency.setter
    def automatic_backup_frequency(self, minutes: int) -> None:
        if minutes <= 0:
            raise ValueError(f"Backup frequency must be positive, got {minutes}")
        if self.config.backup.automatic_frequency == minutes:
            return
        self.config.backup.automatic_frequency = minutes
        self._changed()

    def save(self) -> None:
        """Write the current configuration back to disk."""
        if not self.config_path:
            return
        try:
            toml_utils.save_toml(self.config_path, self.config.to_dict())
        except RuntimeError as e:
            raise ConfigError(str(e)) from e

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener()
        self.save()


def setup_logging(log_file: Optional[str] = None, level: int = logging.INFO) -> None:
    """Setup logging configuration."""
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def load_config(config_path: str) -> SettingsProvider:
    """Load configuration from file, writing a default one if it doesn't exist."""
    path = Path(config_path)

    if not path.exists():
        logger.info(f"No configuration found at {path}, creating one with default settings.")
        settings = SettingsProvider(Config(), str(path))
        settings.save()
        return settings

    try:
        data = toml_utils.load_toml(str(path))
    except ValueError as e:
        raise ConfigError(str(e)) from e

    return SettingsProvider(Config.from_dict(data), str(path))
