"""Tests for map generation and filesystem helpers."""

import os
import sys
import zipfile
from pathlib import Path

import pytest

from bedrock_server_wrapper.managers.papyrus import MapGenerator, find_world_folder
from bedrock_server_wrapper.utils.files import delete_directory, make_executable

linux_only = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs a POSIX shell")


def staged_world(root: Path) -> Path:
    world = root / "Bedrock level"
    (world / "db").mkdir(parents=True)
    (world / "level.dat").write_bytes(b"level")
    return world


def test_find_world_folder(tmp_path):
    world = staged_world(tmp_path)

    assert find_world_folder(tmp_path) == world
    assert find_world_folder(tmp_path / "Bedrock level" / "db") is None


def test_delete_directory(tmp_path, logger):
    staged_world(tmp_path / "staging")

    assert delete_directory(tmp_path / "staging", logger) is True
    assert not (tmp_path / "staging").exists()
    assert delete_directory(tmp_path / "staging", logger) is False


def test_make_executable(tmp_path, logger):
    script = tmp_path / "run.sh"
    script.write_text("#!/bin/sh\n")

    assert make_executable(script, logger) is True
    assert os.access(script, os.X_OK) or sys.platform == "win32"
    assert make_executable(tmp_path / "missing", logger) is False


@pytest.mark.asyncio
async def test_disabled_generator_does_nothing(test_config, logger, tmp_path):
    staged_world(tmp_path / "staging")
    generator = MapGenerator(test_config, logger)

    await generator.generate_map(tmp_path / "staging")

    assert not generator.papyrus_dir.exists()


@linux_only
@pytest.mark.asyncio
async def test_renders_every_dimension(test_config, logger, tmp_path, caplog):
    """Test a renderer that has no nether or end data to draw."""
    test_config.papyrus.enabled = True
    calls = tmp_path / "calls.txt"
    papyrus = Path(test_config.papyrus.folder)
    papyrus.mkdir(parents=True)
    executable = papyrus / "PapyrusCs"
    executable.write_text(
        "#!/bin/sh\n"
        f"echo \"$@\" >> '{calls}'\n"
        "case \"$6\" in 0) exit 0;; *) exit 134;; esac\n"
    )
    make_executable(executable)
    test_config.papyrus.post_run_command = f"echo done >> '{calls}'"

    staged_world(tmp_path / "staging")
    await MapGenerator(test_config, logger).generate_map(tmp_path / "staging")

    lines = calls.read_text().splitlines()
    assert [line.split("--dim ")[1].split()[0] for line in lines[:3]] == ["0", "1", "2"]
    assert lines[3] == "done"
    assert "non-existent dimension" in caplog.text


@pytest.mark.asyncio
async def test_broken_papyrus_download_is_logged(test_config, logger, tmp_path, monkeypatch, caplog):
    test_config.papyrus.enabled = True
    staged_world(tmp_path / "staging")
    generator = MapGenerator(test_config, logger)

    async def corrupt_install():
        raise zipfile.BadZipFile("File is not a zip file")

    monkeypatch.setattr(generator, "install", corrupt_install)

    await generator.generate_map(tmp_path / "staging")

    assert "Could not install PapyrusCs" in caplog.text
