"""Managers package for Bedrock Server Wrapper."""

from .backup import BackupCompleted, BackupManager, BackupScheduler, BackupState
from .notification import NotificationManager
from .papyrus import MapGenerator
from .player import Player, PlayerManager
from .update import SelfUpdater, ServerDownloader

__all__ = [
    'BackupCompleted',
    'BackupManager',
    'BackupScheduler',
    'BackupState',
    'MapGenerator',
    'NotificationManager',
    'Player',
    'PlayerManager',
    'SelfUpdater',
    'ServerDownloader',
]
