"""Classification of Bedrock server console output."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Final, Optional, Pattern, Tuple


class LineKind(Enum):
    """What a line of server output announces."""
    STARTING = "starting"
    STARTED = "started"
    SAVING = "saving"
    BACKUP_READY = "backup_ready"
    PLAYER_CONNECTED = "player_connected"
    PLAYER_DISCONNECTED = "player_disconnected"
    SERVER_VALUE = "server_value"
    OTHER = "other"


@dataclass(frozen=True)
class LineMarker:
    """A substring to look for and, optionally, the pattern capturing its data."""
    kind: LineKind
    marker: str
    pattern: Optional[Pattern[str]] = None


@dataclass(frozen=True)
class ValueMarker:
    """A server property announced once during startup."""
    key: str
    marker: str
    pattern: Pattern[str]


@dataclass(frozen=True)
class ScannedLine:
    """Result of scanning a single line."""
    kind: LineKind
    line: str
    groups: Tuple[str, ...] = ()


# Evaluated in order, first match wins.
LIFECYCLE_MARKERS: Final[Tuple[LineMarker, ...]] = (
    LineMarker(LineKind.STARTING, "Starting Server"),
    LineMarker(LineKind.STARTED, "Server started"),
    LineMarker(LineKind.SAVING, "Saving..."),
    LineMarker(LineKind.BACKUP_READY, "level.dat"),
    LineMarker(
        LineKind.PLAYER_CONNECTED,
        "Player connected",
        re.compile(r"Player connected: (.+?), xuid: ([^,\s]*)"),
    ),
    LineMarker(
        LineKind.PLAYER_DISCONNECTED,
        "Player disconnected",
        re.compile(r"Player disconnected: (.+?), xuid: ([^,\s]*)"),
    ),
)

VALUE_MARKERS: Final[Tuple[ValueMarker, ...]] = (
    ValueMarker("Difficulty", "Difficulty: ", re.compile(r"Difficulty: \d+ (.+)")),
    ValueMarker("GameMode", "Game mode: ", re.compile(r"Game mode: \d+ (.+)")),
    ValueMarker("LevelName", "Level Name: ", re.compile(r"Level Name: (.+)")),
    ValueMarker("ServerVersion", "Version", re.compile(r"Version:? (\d+\.\d+\.\d+\.\d+)")),
    ValueMarker("IpV4Port", "IPv4 supported", re.compile(r"port: (\d+)")),
    ValueMarker("IpV6Port", "IPv6 supported", re.compile(r"port: (\d+)")),
)


class LineScanner:
    """Classifies server output and collects the server values it announces.

    ``server_values`` is filled add-once: the first well-formed line for a key
    wins and later lines never overwrite it.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.server_values: Dict[str, str] = {}

    def scan(self, line: str) -> ScannedLine:
        """Classify a line of server output."""
        for marker in LIFECYCLE_MARKERS:
            if marker.marker not in line:
                continue

            if marker.pattern is None:
                return ScannedLine(marker.kind, line)

            match = marker.pattern.search(line)
            if not match:
                self.logger.warning(f"Couldn't parse {marker.kind.value} line: {line}")
                return ScannedLine(LineKind.OTHER, line)
            return ScannedLine(marker.kind, line, tuple(g.strip() for g in match.groups()))

        for value in VALUE_MARKERS:
            if value.marker not in line or value.key in self.server_values:
                continue

            match = value.pattern.search(line)
            if not match:
                continue

            self.server_values[value.key] = match.group(1).strip()
            return ScannedLine(LineKind.SERVER_VALUE, line, (value.key, self.server_values[value.key]))

        return ScannedLine(LineKind.OTHER, line)
