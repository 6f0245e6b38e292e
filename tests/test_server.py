"""Tests for the server process controller, run against a shell script server."""

import asyncio
import sys
from pathlib import Path

import pytest

from bedrock_server_wrapper.controllers import server as server_module
from bedrock_server_wrapper.controllers.server import ServerProcess
from bedrock_server_wrapper.exceptions import ServerError
from bedrock_server_wrapper.utils.files import make_executable

pytestmark = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs a POSIX shell")

ECHO_SERVER = """#!/bin/sh
echo "Starting Server"
echo "warming up" >&2
while read line; do
  if [ "$line" = "stop" ]; then
    echo "Quit correctly"
    exit 0
  fi
  echo "got $line"
done
"""

STUBBORN_SERVER = """#!/bin/sh
echo "Starting Server"
while true; do
  read line || sleep 1
done
"""

DEAF_SERVER = """#!/bin/sh
exec 0<&-
echo "Starting Server"
exec sleep 30
"""

FILE_LIST_SERVER = """#!/bin/sh
i=0
while [ $i -lt 2000 ]; do
  printf 'Bedrock level/db/%06d.ldb:2097152, ' $i
  i=$((i+1))
done
printf 'Bedrock level/level.dat:100\\n'
echo "after-line"
read line
"""


def install_server(config, script: str) -> Path:
    executable = Path(config.paths.server) / config.server.executable_name
    executable.write_text(script)
    make_executable(executable)
    return executable


class Recorder:
    def __init__(self):
        self.lines = []

    async def __call__(self, line):
        self.lines.append(line)

    async def wait_for(self, predicate, timeout=5.0):
        for _ in range(int(timeout / 0.01)):
            if any(predicate(line) for line in self.lines):
                return
            await asyncio.sleep(0.01)
        raise AssertionError(f"No matching line in {self.lines[-5:]}")


@pytest.fixture
def process(test_config, logger):
    return ServerProcess(test_config, logger)


@pytest.mark.asyncio
async def test_start_relays_output_and_input(test_config, process):
    install_server(test_config, ECHO_SERVER)
    output, errors = Recorder(), Recorder()
    process.add_output_listener(output)
    process.add_error_listener(errors)

    await process.start()
    assert process.is_running
    await output.wait_for(lambda line: line == "Starting Server")
    await errors.wait_for(lambda line: line == "warming up")

    await process.say("hello")
    await output.wait_for(lambda line: line == "got say hello")

    with pytest.raises(ServerError):
        await process.start()

    await process.stop()
    assert not process.is_running
    assert await process.wait() == 0


@pytest.mark.asyncio
async def test_stop_kills_unresponsive_server(test_config, process, caplog):
    install_server(test_config, STUBBORN_SERVER)
    output = Recorder()
    process.add_output_listener(output)

    await process.start()
    await output.wait_for(lambda line: line == "Starting Server")
    await process.stop()

    assert not process.is_running
    assert "Killing" in caplog.text


@pytest.mark.asyncio
async def test_send_input_to_closed_pipe(test_config, process):
    install_server(test_config, DEAF_SERVER)
    output = Recorder()
    process.add_output_listener(output)

    await process.start()
    await output.wait_for(lambda line: line == "Starting Server")
    await asyncio.sleep(0.1)

    for _ in range(3):
        await process.send_input("list")

    assert process.is_running
    await process.stop()
    assert not process.is_running


@pytest.mark.asyncio
async def test_send_input_when_not_started(process, caplog):
    await process.send_input("list")

    assert "not running" in caplog.text


@pytest.mark.asyncio
async def test_long_file_list_line_is_read(test_config, process):
    """Test that a save query answer longer than 64 KiB arrives intact."""
    install_server(test_config, FILE_LIST_SERVER)
    output = Recorder()
    process.add_output_listener(output)

    await process.start()
    await output.wait_for(lambda line: line == "after-line")

    file_list = output.lines[0]
    assert len(file_list) > 64 * 1024
    assert file_list.endswith("Bedrock level/level.dat:100")
    await process.stop()


@pytest.mark.asyncio
async def test_overlong_line_does_not_stop_reader(test_config, process, monkeypatch, caplog):
    monkeypatch.setattr(server_module, "STREAM_LIMIT", 1024)
    install_server(test_config, FILE_LIST_SERVER)
    output = Recorder()
    process.add_output_listener(output)

    await process.start()
    await output.wait_for(lambda line: line == "after-line")

    assert not any(line.endswith("level.dat:100") and len(line) > 1024 for line in output.lines)
    assert "Discarded server output line" in caplog.text
    await process.stop()
