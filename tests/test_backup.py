"""Tests for the backup handshake, file staging and archive retention."""

import asyncio
import os
import re
import tempfile
import threading
import zipfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from bedrock_server_wrapper.config.config import SettingsProvider
from bedrock_server_wrapper.exceptions import BackupError
from bedrock_server_wrapper.managers import backup
from bedrock_server_wrapper.managers.backup import (
    BackupManager,
    BackupRequest,
    BackupScheduler,
    BackupState,
    backup_file_name,
    create_archive,
    get_sorted_backups,
    prune_archives,
    stage_files,
)
from bedrock_server_wrapper.managers.player import Player, PlayerManager

ARCHIVE_NAME = re.compile(r"backup_\d{8}-\d{6}\.zip")


def write_world_file(config, relative: str, size: int) -> bytes:
    path = config.paths.worlds / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    data = bytes(i % 251 for i in range(size))
    path.write_bytes(data)
    return data


@pytest.fixture
def staging_root(tmp_path, monkeypatch):
    """Redirect temporary staging directories into the test folder."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def manager(test_config, logger, fake_server, clock):
    return BackupManager(test_config, logger, fake_server, clock=clock)


def test_parse_request():
    """Test parsing of the file list reported by save query."""
    request = BackupRequest.parse("level.dat:4096, level.dat_old:2048,Bedrock level/db/CURRENT:16")

    assert request.files == (
        ("level.dat", 4096),
        ("level.dat_old", 2048),
        ("Bedrock level/db/CURRENT", 16),
    )


@pytest.mark.parametrize("payload", ["", "level.dat", "level.dat:abc", "level.dat:-1", ":12"])
def test_parse_request_rejects_malformed(payload):
    with pytest.raises(BackupError):
        BackupRequest.parse(payload)


def test_stage_files_copies_reported_prefix(test_config, tmp_path):
    """Test that only the reported number of bytes is copied."""
    level = write_world_file(test_config, "Bedrock level/level.dat", 5000)
    manifest = write_world_file(test_config, "Bedrock level/db/MANIFEST-000001", 300)
    staging = tmp_path / "staging"
    staging.mkdir()

    request = BackupRequest.parse("Bedrock level/level.dat:4096, Bedrock level/db/MANIFEST-000001:300")
    stage_files(request, test_config.paths.worlds, staging)

    assert (staging / "Bedrock level/level.dat").read_bytes() == level[:4096]
    assert (staging / "Bedrock level/db/MANIFEST-000001").read_bytes() == manifest


def test_stage_files_truncated_source(test_config, tmp_path):
    write_world_file(test_config, "level.dat", 10)

    with pytest.raises(BackupError, match="Truncated"):
        stage_files(BackupRequest.parse("level.dat:20"), test_config.paths.worlds, tmp_path)


def test_stage_files_missing_source(test_config, tmp_path):
    with pytest.raises(BackupError):
        stage_files(BackupRequest.parse("missing.dat:20"), test_config.paths.worlds, tmp_path)


def test_stage_files_rejects_paths_outside_world(test_config, tmp_path):
    with pytest.raises(BackupError, match="outside"):
        stage_files(BackupRequest.parse("../../secret:1"), test_config.paths.worlds, tmp_path)


def test_backup_file_name_format():
    name = backup_file_name(datetime(2024, 1, 2, 3, 4, 5))

    assert name == "backup_20240102-030405.zip"
    assert ARCHIVE_NAME.fullmatch(name)


def test_create_archive_avoids_name_collision(tmp_path):
    """Test that a same-second archive gets the next free timestamp."""
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "level.dat").write_bytes(b"data")
    backups = tmp_path / "backups"
    timestamp = datetime(2024, 1, 2, 3, 4, 5)

    first = create_archive(staging, backups, timestamp)
    second = create_archive(staging, backups, timestamp)

    assert first.name == "backup_20240102-030405.zip"
    assert second.name == "backup_20240102-030406.zip"
    assert ARCHIVE_NAME.fullmatch(second.name)


def test_prune_archives_keeps_newest(tmp_path, logger):
    """Test retention: archives from minutes 1-5 plus a 6th, retention 2."""
    base = datetime(2024, 5, 1, 12, 0, 0).timestamp()
    for minute in range(1, 7):
        archive = tmp_path / f"backup_20240501-12{minute:02d}00.zip"
        archive.write_bytes(b"zip")
        os.utime(archive, (base + minute * 60, base + minute * 60))
    unrelated = tmp_path / "notes.zip"
    unrelated.write_bytes(b"keep")

    removed = prune_archives(tmp_path, 2, logger)

    remaining = sorted(p.name for p in tmp_path.glob("backup_*.zip"))
    assert remaining == [
        "backup_20240501-120400.zip",
        "backup_20240501-120500.zip",
        "backup_20240501-120600.zip",
    ]
    assert len(removed) == 3
    assert unrelated.exists()


def test_prune_archives_leaves_n_plus_one(tmp_path, logger):
    base = datetime(2024, 5, 1).timestamp()
    for i in range(10):
        archive = tmp_path / f"backup_20240501-0000{i:02d}.zip"
        archive.write_bytes(b"zip")
        os.utime(archive, (base + i, base + i))

    prune_archives(tmp_path, 4, logger)

    remaining = sorted(p.name for p in tmp_path.glob("backup_*.zip"))
    assert remaining == [f"backup_20240501-0000{i:02d}.zip" for i in range(5, 10)]


@pytest.mark.asyncio
async def test_successful_backup(manager, test_config, fake_server, clock, staging_root):
    """Test a complete handshake taking 60 seconds."""
    level = write_world_file(test_config, "level.dat", 5000)
    level_old = write_world_file(test_config, "level.dat_old", 2048)
    events = []
    manager.add_listener(events.append)

    assert await manager.request_backup(manual=True)
    assert manager.state is BackupState.AWAITING_QUIESCE
    await manager.on_saving()
    assert manager.state is BackupState.QUIESCED

    clock.advance(60)
    event = await manager.on_backup_ready("level.dat:4096,level.dat_old:2048")

    assert event is not None and event.successful
    assert event.manual
    assert event.backup_duration == timedelta(seconds=60)
    assert events == [event]
    assert manager.state is BackupState.IDLE

    archives = list(Path(test_config.paths.backups).glob("*.zip"))
    assert len(archives) == 1
    assert ARCHIVE_NAME.fullmatch(archives[0].name)
    assert str(archives[0]) == event.backup_file
    with zipfile.ZipFile(archives[0]) as zf:
        assert sorted(zf.namelist()) == ["level.dat", "level.dat_old"]
        assert zf.read("level.dat") == level[:4096]
        assert zf.read("level.dat_old") == level_old

    assert fake_server.sent[0] == "save hold"
    assert fake_server.sent.count("save hold") == 1
    assert fake_server.sent.count("save resume") == 1
    assert list(staging_root.iterdir()) == []


@pytest.mark.asyncio
async def test_staging_failure_resumes_saving(manager, test_config, fake_server, staging_root):
    """Test that a failed copy cleans up and sends save resume exactly once."""
    write_world_file(test_config, "level.dat", 100)
    events = []
    manager.add_listener(events.append)

    await manager.request_backup(manual=True)
    await manager.on_saving()
    event = await manager.on_backup_ready("level.dat:100, missing.ldb:50")

    assert event is not None and not event.successful
    assert event.backup_file is None
    assert event.backup_duration == timedelta(0)
    assert events == [event]
    assert fake_server.sent.count("save resume") == 1
    assert manager.state is BackupState.IDLE
    assert list(staging_root.iterdir()) == []
    assert list(Path(test_config.paths.backups).iterdir()) == []


@pytest.mark.asyncio
async def test_malformed_payload_fails_backup(manager, fake_server, staging_root):
    await manager.request_backup(manual=True)
    await manager.on_saving()
    event = await manager.on_backup_ready("level.dat")

    assert event is not None and not event.successful
    assert fake_server.sent.count("save resume") == 1
    assert list(staging_root.iterdir()) == []


@pytest.mark.asyncio
async def test_scheduled_backup_skipped_without_players(manager, fake_server):
    """Test that scheduled backups need a player to have been online."""
    assert not await manager.request_backup(manual=False)

    assert manager.state is BackupState.IDLE
    assert fake_server.sent == []


@pytest.mark.asyncio
async def test_scheduled_backup_after_player_joined(test_config, logger, fake_server, clock):
    player_manager = PlayerManager(test_config, logger, clock=clock)
    manager = BackupManager(test_config, logger, fake_server, player_manager, clock=clock)

    player_manager.player_joined(Player("Steve", "1"))
    player_manager.player_left(Player("Steve", "1"))

    assert await manager.request_backup(manual=False)
    assert fake_server.sent == ["save hold"]


@pytest.mark.asyncio
async def test_request_while_armed_is_ignored(manager, fake_server):
    """Test that a second trigger doesn't re-arm or send another save hold."""
    manager.player_joined(Player("Steve", "1"))

    assert await manager.request_backup(manual=True)
    assert not await manager.request_backup(manual=True)
    assert not await manager.request_backup(manual=False)

    assert fake_server.sent.count("save hold") == 1
    assert manager.state is BackupState.AWAITING_QUIESCE


@pytest.mark.asyncio
async def test_unrequested_backup_data_is_ignored(manager, fake_server):
    assert await manager.on_backup_ready("level.dat:10") is None

    assert manager.state is BackupState.IDLE
    assert fake_server.sent == []


@pytest.mark.asyncio
async def test_query_loop_polls_until_data_ready(manager, test_config, fake_server, staging_root):
    write_world_file(test_config, "level.dat", 10)

    await manager.request_backup(manual=True)
    await manager.on_saving()
    await asyncio.sleep(0.05)

    assert fake_server.sent.count("save query") >= 2
    assert "say Backup started." in fake_server.sent

    await manager.on_backup_ready("level.dat:10")
    queries = fake_server.sent.count("save query")
    await asyncio.sleep(0.05)

    assert fake_server.sent.count("save query") == queries


@pytest.mark.asyncio
async def test_saving_without_request_does_not_poll(manager, fake_server):
    await manager.on_saving()
    await asyncio.sleep(0.03)

    assert fake_server.sent == []
    assert manager.state is BackupState.IDLE


@pytest.mark.asyncio
async def test_cancel_releases_save_hold(manager, fake_server):
    await manager.request_backup(manual=True)
    await manager.on_saving()

    await manager.cancel()

    assert manager.state is BackupState.IDLE
    assert fake_server.sent.count("save resume") == 1
    await manager.cancel()
    assert fake_server.sent.count("save resume") == 1


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(manager, test_config, staging_root):
    write_world_file(test_config, "level.dat", 10)
    received = []

    def broken(event):
        raise RuntimeError("boom")

    async def working(event):
        received.append(event)

    manager.add_listener(broken)
    manager.add_listener(working)

    await manager.request_backup(manual=True)
    event = await manager.on_backup_ready("level.dat:10")

    assert received == [event]


class BrokenMapGenerator:
    def __init__(self):
        self.calls = []

    async def generate_map(self, staging_dir):
        self.calls.append((staging_dir / "level.dat").exists())
        raise RuntimeError("renderer crashed")


@pytest.mark.asyncio
async def test_map_generation_failure_does_not_fail_backup(test_config, logger, fake_server, clock, staging_root):
    write_world_file(test_config, "level.dat", 10)
    test_config.papyrus.enabled = True
    generator = BrokenMapGenerator()
    manager = BackupManager(test_config, logger, fake_server, map_generator=generator, clock=clock)

    await manager.request_backup(manual=True)
    event = await manager.on_backup_ready("level.dat:10")
    await manager.wait_for_background()

    assert event is not None and event.successful
    assert generator.calls == [True]
    assert list(staging_root.iterdir()) == []


@pytest.mark.asyncio
async def test_backup_prunes_old_archives(manager, test_config, clock, staging_root):
    write_world_file(test_config, "level.dat", 10)
    backups = Path(test_config.paths.backups)
    base = datetime(2024, 4, 1).timestamp()
    for i in range(5):
        archive = backups / f"backup_20240401-00000{i}.zip"
        archive.write_bytes(b"old")
        os.utime(archive, (base + i, base + i))

    await manager.request_backup(manual=True)
    event = await manager.on_backup_ready("level.dat:10")

    remaining = sorted(p.name for p in backups.glob("*.zip"))
    assert len(remaining) == test_config.backup.retention_count + 1
    assert Path(event.backup_file).name in remaining
    assert "backup_20240401-000004.zip" in remaining


@pytest.mark.asyncio
async def test_scheduler_follows_settings(test_config, logger, manager):
    settings = SettingsProvider(test_config)
    scheduler = BackupScheduler(settings, manager, logger)

    scheduler.start()
    assert scheduler.is_running

    settings.automatic_backup_enabled = False
    assert not scheduler.is_running

    settings.automatic_backup_enabled = True
    assert scheduler.is_running

    scheduler.stop()
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_scheduler_trigger_is_scheduled_backup(test_config, logger, manager, fake_server):
    scheduler = BackupScheduler(SettingsProvider(test_config), manager, logger)

    assert not await scheduler.trigger()
    assert fake_server.sent == []


@pytest.mark.asyncio
async def test_request_rejected_while_server_down(manager, fake_server):
    """Test that a backup isn't armed when save hold can't be delivered."""
    manager.player_joined(Player("Steve", "1"))
    fake_server.running = False

    assert not await manager.request_backup(manual=False)
    assert manager.state is BackupState.IDLE
    assert fake_server.sent == []

    fake_server.running = True
    assert await manager.request_backup(manual=True)
    assert fake_server.sent == ["save hold"]


@pytest.mark.asyncio
async def test_archive_write_failure(manager, test_config, fake_server, staging_root, monkeypatch):
    """Test that a failed zip write leaves no partial archive and resumes saving."""
    write_world_file(test_config, "level.dat", 10)
    events = []
    manager.add_listener(events.append)

    def broken_write(self, *args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(zipfile.ZipFile, "write", broken_write)

    await manager.request_backup(manual=True)
    await manager.on_saving()
    event = await manager.on_backup_ready("level.dat:10")

    assert event is not None and not event.successful
    assert events == [event]
    assert fake_server.sent.count("save resume") == 1
    assert manager.state is BackupState.IDLE
    assert list(Path(test_config.paths.backups).iterdir()) == []
    assert list(staging_root.iterdir()) == []


@pytest.mark.asyncio
async def test_prune_error_still_resumes_saving(manager, test_config, fake_server, staging_root, monkeypatch):
    write_world_file(test_config, "level.dat", 10)

    def vanished(*args, **kwargs):
        raise FileNotFoundError("backup_20240101-000000.zip")

    monkeypatch.setattr(backup, "prune_archives", vanished)

    await manager.request_backup(manual=True)
    event = await manager.on_backup_ready("level.dat:10")

    assert event is not None and event.successful
    assert fake_server.sent.count("save resume") == 1
    assert manager.state is BackupState.IDLE
    assert list(staging_root.iterdir()) == []


def test_sorted_backups_skip_vanished_archive(tmp_path, monkeypatch):
    for second in range(3):
        (tmp_path / f"backup_20240501-00000{second}.zip").write_bytes(b"zip")

    real_stat = Path.stat

    def flaky_stat(self, *args, **kwargs):
        if self.name == "backup_20240501-000001.zip":
            raise FileNotFoundError(str(self))
        return real_stat(self, *args, **kwargs)

    monkeypatch.setattr(Path, "stat", flaky_stat)

    names = sorted(p.name for p in get_sorted_backups(tmp_path))
    assert names == ["backup_20240501-000000.zip", "backup_20240501-000002.zip"]


@pytest.mark.asyncio
async def test_cancelled_copy_resumes_saving(manager, test_config, fake_server, staging_root, monkeypatch):
    """Test that cancelling the task during staging still releases the save hold."""
    started = threading.Event()
    release = threading.Event()

    def slow_stage(*args, **kwargs):
        started.set()
        release.wait(5)

    monkeypatch.setattr(backup, "stage_files", slow_stage)

    await manager.request_backup(manual=True)
    task = asyncio.create_task(manager.on_backup_ready("level.dat:10"))
    for _ in range(100):
        if started.is_set():
            break
        await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()

    assert fake_server.sent.count("save resume") == 1
    assert manager.state is BackupState.IDLE
    assert list(staging_root.iterdir()) == []
