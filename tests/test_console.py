import asyncio
import io
import logging

import pytest
import pytest_asyncio

from muip_relay import constants
from muip_relay.adapters import DispatchClient
from muip_relay.console import (
    ConsoleCommand,
    ConsoleRunner,
    LogBroadcaster,
    StdinConsole,
    parse_console_line,
)
from muip_relay.pipeline import CommandPipeline


@pytest_asyncio.fixture
async def runner(dispatch_server, dispatch_config):
    client = DispatchClient(dispatch_config)
    try:
        yield ConsoleRunner(CommandPipeline(client, admin_key=dispatch_server.admin_key))
    finally:
        await client.aclose()


@pytest.mark.parametrize(
    "line, expected",
    [
        ("command:'heal' uid:'1001'", ConsoleCommand(command="heal", uid="1001")),
        ("uid:'7' command:'give 7 x 3'", ConsoleCommand(command="give 7 x 3", uid="7")),
        ("command:'heal'", None),
        ("uid:'1001'", None),
        ("heal 1001", None),
        ("command:'' uid:'1001'", None),
    ],
)
def test_parse_console_line(line, expected):
    assert parse_console_line(line) == expected


def _logger_with(broadcaster: LogBroadcaster) -> logging.Logger:
    logger = logging.getLogger("muip_relay.test.console")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(broadcaster)
    return logger


def test_broadcaster_fans_out_to_observers():
    broadcaster = LogBroadcaster()
    broadcaster.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    first: list[str] = []
    second: list[str] = []
    broadcaster.subscribe(first.append)
    broadcaster.subscribe(second.append)
    logger = _logger_with(broadcaster)

    try:
        logger.info("server up on %s", 3000)
        broadcaster.unsubscribe(second.append)
        logger.warning("second line")
    finally:
        logger.removeHandler(broadcaster)

    assert first == ["INFO server up on 3000", "WARNING second line"]
    assert second == ["INFO server up on 3000"]


def test_broadcaster_rejects_duplicate_observer():
    broadcaster = LogBroadcaster()
    observer = [].append
    broadcaster.subscribe(observer)

    with pytest.raises(ValueError):
        broadcaster.subscribe(observer)


def test_broadcaster_drops_failing_observer():
    broadcaster = LogBroadcaster()
    broadcaster.setFormatter(logging.Formatter("%(message)s"))
    received: list[str] = []

    def broken(_line: str) -> None:
        raise ConnectionResetError("gone")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)
    logger = _logger_with(broadcaster)

    try:
        logger.info("first")
        logger.info("second")
    finally:
        logger.removeHandler(broadcaster)

    assert broadcaster.observer_count == 1
    assert received[0] == "first"
    assert "second" in received


@pytest.mark.asyncio
async def test_runner_executes_command(runner, dispatch_server, caplog):
    caplog.set_level(logging.INFO, logger="muip_relay")

    result = await runner.handle_line("command:'heal' uid:'1001'\n")

    assert result is not None and result.ok
    assert dispatch_server.commands == ["heal"]
    assert "Executed: heal" in caplog.text


@pytest.mark.asyncio
async def test_runner_logs_usage_for_invalid_input(runner, dispatch_server, caplog):
    caplog.set_level(logging.INFO, logger="muip_relay")

    result = await runner.handle_line("what is this")

    assert result is None
    assert "Invalid input" in caplog.text
    assert dispatch_server.calls == []


@pytest.mark.asyncio
async def test_runner_ignores_blank_lines(runner, dispatch_server):
    assert await runner.handle_line("   \n") is None
    assert dispatch_server.calls == []


@pytest.mark.asyncio
async def test_runner_does_not_raise_on_pipeline_error(runner, dispatch_server, caplog):
    dispatch_server.reply(
        constants.CREATE_SESSION_PATH,
        {"code": 1, "message": "Dispatch busy", "data": None},
    )

    result = await runner.handle_line("command:'heal' uid:'1001'")

    assert result is None
    assert "Dispatch busy" in caplog.text


@pytest.mark.asyncio
async def test_runner_reports_soft_errors(runner, dispatch_server, caplog):
    dispatch_server.reply(
        constants.EXEC_CMD_PATH,
        {"code": 4, "message": "Player offline", "data": None},
    )

    result = await runner.handle_line("command:'heal' uid:'1001'")

    assert result is not None and not result.ok
    assert "Player offline" in caplog.text


@pytest.mark.asyncio
async def test_stdin_console_processes_stream(runner, dispatch_server):
    stream = io.StringIO("command:'heal' uid:'1001'\nnonsense\ncommand:'kick' uid:'2'\n")
    console = StdinConsole(runner, stream=stream)

    await console.start()
    await asyncio.wait_for(console.wait_closed(), timeout=5.0)
    await console.stop()

    assert dispatch_server.commands == ["heal", "kick"]
