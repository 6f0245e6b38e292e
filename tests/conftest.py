"""Pytest configuration for bedrock-server-wrapper tests."""

import logging
from datetime import datetime, timedelta
from typing import List

import pytest


class FakeServer:
    """Records console input instead of writing to a real server."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.running = True

    @property
    def is_running(self) -> bool:
        return self.running

    async def send_input(self, text: str) -> None:
        self.sent.append(text)

    async def say(self, message: str) -> None:
        await self.send_input(f"say {message}")


class FakeClock:
    """Controllable replacement for ``datetime.now``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def logger():
    """Create a test logger."""
    return logging.getLogger('test')


@pytest.fixture
def test_data_dir(tmp_path):
    """Get the test data directory."""
    return tmp_path


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0))


@pytest.fixture
def test_config(test_data_dir):
    """Create a test configuration."""
    from bedrock_server_wrapper.config.config import Config

    # Create test directories
    (test_data_dir / 'server' / 'worlds').mkdir(parents=True, exist_ok=True)
    (test_data_dir / 'backups').mkdir(parents=True, exist_ok=True)
    (test_data_dir / 'data').mkdir(parents=True, exist_ok=True)

    return Config.from_dict({
        'paths': {
            'server': str(test_data_dir / 'server'),
            'backups': str(test_data_dir / 'backups'),
            'logs': str(test_data_dir / 'logs/wrapper.log'),
            'data': str(test_data_dir / 'data'),
        },
        'server': {
            'executable': 'bedrock_server',
            'stop_timeout': 1,
        },
        'backup': {
            'automatic_enabled': True,
            'automatic_frequency': 60,
            'retention_count': 2,
            'query_interval': 0.01,
        },
        'papyrus': {
            'enabled': False,
            'folder': str(test_data_dir / 'papyrus'),
        },
        'notifications': {
            'discord_webhook': '',
            'welcome_delay': 0,
        },
    })
