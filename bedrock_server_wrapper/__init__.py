"""Bedrock Server Wrapper - supervises a Minecraft Bedrock dedicated server."""

from typing import Final

from .bedrock_server_wrapper import BedrockServerWrapper
from .exceptions import (
    BackupError,
    BedrockServerWrapperError,
    ConfigError,
    ServerError,
    UpdateError,
)
from .managers import BackupManager, NotificationManager, PlayerManager
from .utils.constants import WRAPPER_VERSION

__version__: Final[str] = WRAPPER_VERSION
__author__: Final[str] = "squid-box"
__license__: Final[str] = "MIT"

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "BedrockServerWrapper",
    "BackupManager",
    "NotificationManager",
    "PlayerManager",
    "BedrockServerWrapperError",
    "ConfigError",
    "ServerError",
    "BackupError",
    "UpdateError",
]
