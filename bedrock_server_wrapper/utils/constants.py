"""Constants used throughout the application."""

from typing import Final

WRAPPER_VERSION: Final[str] = "1.0.0"

# Default paths
DEFAULT_CONFIG_PATH: Final[str] = "bedrock-server-wrapper.toml"
PLAYER_TIME_LOG_FILE: Final[str] = "playertime.json"
PLAYER_SEEN_LOG_FILE: Final[str] = "playerseen.json"

# Server executables
LINUX_SERVER_EXECUTABLE: Final[str] = "bedrock_server"
WINDOWS_SERVER_EXECUTABLE: Final[str] = "bedrock_server.exe"
PROTECTED_SERVER_FILES: Final[tuple] = (
    "server.properties",
    "permissions.json",
    "allowlist.json",
    "whitelist.json",
)

# Server console commands
SAVE_HOLD: Final[str] = "save hold"
SAVE_QUERY: Final[str] = "save query"
SAVE_RESUME: Final[str] = "save resume"
STOP_COMMAND: Final[str] = "stop"

# Longest console line read from the server, the save query file list is a single line
STREAM_LIMIT: Final[int] = 16 * 1024 * 1024

# Backup settings
BACKUP_PREFIX: Final[str] = "backup_"
BACKUP_TIMESTAMP_FORMAT: Final[str] = "%Y%m%d-%H%M%S"
BACKUP_NAME_PATTERN: Final[str] = r"backup_\d{8}-\d{6}\.zip"
STAGING_DIR_PREFIX: Final[str] = "bsw_backup_"
DEFAULT_QUERY_INTERVAL: Final[float] = 1.0  # seconds between "save query" polls
DEFAULT_BACKUP_FREQUENCY: Final[int] = 60  # minutes
DEFAULT_RETENTION_COUNT: Final[int] = 7

# API endpoints
BEDROCK_LINKS_URL: Final[str] = (
    "https://net-secondary.web.minecraft-services.net/api/v1.0/download/links"
)
SELF_UPDATE_URL: Final[str] = (
    "https://api.github.com/repos/squid-box/MCBE-ServerWrapper/releases/latest"
)
PAPYRUS_RELEASE_URL: Final[str] = (
    "https://api.github.com/repos/mjungnickel18/papyruscs/releases/latest"
)

# API timeouts
DEFAULT_TIMEOUT: Final[int] = 30  # seconds
DOWNLOAD_CHUNK_SIZE: Final[int] = 64 * 1024

# Discord message settings
DISCORD_MAX_LENGTH: Final[int] = 2000
DISCORD_SUCCESS_COLOR: Final[int] = 0x00FF00  # Green
DISCORD_ERROR_COLOR: Final[int] = 0xFF0000    # Red
DISCORD_FOOTER_TEXT: Final[str] = "Bedrock Server Wrapper"

# PapyrusCs exit codes raised for dimensions that don't exist in the world
PAPYRUS_MISSING_DIMENSION_CODES: Final[tuple] = (-532462766, 134)

# Exit codes
EXIT_OK: Final[int] = 0
EXIT_INVALID_SERVER_FILES: Final[int] = 2
EXIT_UNKNOWN_CRASH: Final[int] = 3
