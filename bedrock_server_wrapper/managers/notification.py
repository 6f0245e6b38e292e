"""In-game chat and Discord notifications."""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

import aiohttp

from ..config.config import Config
from ..controllers.server import ServerConsoleProtocol
from ..utils.constants import (
    DEFAULT_TIMEOUT,
    DISCORD_ERROR_COLOR,
    DISCORD_FOOTER_TEXT,
    DISCORD_MAX_LENGTH,
    DISCORD_SUCCESS_COLOR,
)
from .backup import BackupCompleted
from .player import Player, PlayerManager, time_played_conversion


class NotificationManager:
    """Handles in-game announcements and Discord notifications."""

    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        server: ServerConsoleProtocol,
        player_manager: Optional[PlayerManager] = None,
    ) -> None:
        """Initialize notification manager."""
        self.config = config
        self.logger = logger
        self.server = server
        self.player_manager = player_manager
        self.webhook_url = config.notifications.discord_webhook
        self._pending: Set[asyncio.Task] = set()

    async def send_discord_notification(self, title: str, message: str, is_error: bool = False) -> None:
        """Send formatted notification to Discord webhook.

        Args:
            title: Notification title
            message: Notification message
            is_error: Whether this is an error notification (changes color)
        """
        if not self.webhook_url:
            self.logger.debug("Discord notifications disabled - no webhook URL configured")
            return

        try:
            # Truncate message if too long
            if len(message) > DISCORD_MAX_LENGTH:
                message = message[:DISCORD_MAX_LENGTH - 3] + "..."

            # Format Discord embed
            payload: Dict[str, Any] = {
                "embeds": [{
                    "title": title,
                    "description": message,
                    "color": DISCORD_ERROR_COLOR if is_error else DISCORD_SUCCESS_COLOR,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "footer": {"text": DISCORD_FOOTER_TEXT}
                }]
            }

            timeout = aiohttp.ClientTimeout(total=DEFAULT_TIMEOUT)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status not in (200, 204):
                        raise RuntimeError(f"Discord API returned status {response.status}")

        except asyncio.TimeoutError:
            self.logger.error("Discord notification timed out")
        except (aiohttp.ClientError, RuntimeError) as e:
            self.logger.error(f"Failed to send Discord notification: {str(e)}")

    async def on_backup_completed(self, event: BackupCompleted) -> None:
        """Announce the outcome of a backup in game and on Discord."""
        if not event.successful or event.backup_file is None:
            await self.server.say("Backup failed.")
            await self.send_discord_notification("Server Backup", "❌ Backup failed.", True)
            return

        summary = (
            f"{Path(event.backup_file).name} ({_size_in_mb(event.backup_file)}MB), "
            f"completed in {event.backup_duration.total_seconds():.1f}s."
        )
        await self.server.say(f"Backup completed: {summary}")
        await self.send_discord_notification("Server Backup", f"✅ Created backup: {summary}")

    def on_player_connected(self, player: Player) -> None:
        """Greet a player once they've had time to load in."""
        task = asyncio.get_running_loop().create_task(self.welcome(player))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def on_player_disconnected(self, player: Player) -> None:
        task = asyncio.get_running_loop().create_task(self.server.say(f"Goodbye {player}!"))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def welcome(self, player: Player) -> None:
        """Send the welcome message for a player after the configured delay."""
        played = self.player_manager.get_played_minutes(player) if self.player_manager else -1
        last_seen = self.player_manager.get_last_seen(player) if self.player_manager else None

        await asyncio.sleep(self.config.notifications.welcome_delay)

        if played == -1:
            await self.server.say(f"Welcome {player}!")
            return

        message = f"Welcome back {player}, you've played {time_played_conversion(played)}"
        if last_seen is not None:
            message += f", we last saw you {last_seen:%Y-%m-%d}"
        await self.server.say(message + ".")


def _size_in_mb(path: str) -> int:
    try:
        return Path(path).stat().st_size // 1024 // 1024
    except OSError:
        return 0
