import asyncio

import aiohttp
import pytest

from muip_relay.adapters import DispatchClient
from muip_relay.app import RelayApp, build_rate_gate
from muip_relay.config import load_config


@pytest.fixture
def relay_config(tmp_path, unused_tcp_port):
    path = tmp_path / "muip-relay.cfg"
    path.write_text(
        "[server]\nhost = 127.0.0.1\nport = {port}\n\n"
        "[rate_limit]\nmax_requests = 1\nmax_entries = 50\n".format(port=unused_tcp_port),
        encoding="utf-8",
    )
    return load_config(path)


def test_build_rate_gate_uses_config(relay_config):
    gate = build_rate_gate(relay_config)

    assert gate.check("1001").allowed
    assert not gate.check("1001").allowed


async def _wait_for_ping(url: str) -> int:
    async with aiohttp.ClientSession() as session:
        for _ in range(100):
            try:
                async with session.get(url) as response:
                    return response.status
            except aiohttp.ClientConnectionError:
                await asyncio.sleep(0.02)
    raise AssertionError("gateway did not come up")


@pytest.mark.asyncio
async def test_app_serves_until_shutdown(relay_config, dispatch_server, dispatch_config):
    relay_config.dispatch.admin_key = dispatch_server.admin_key
    client = DispatchClient(dispatch_config)
    app = RelayApp(relay_config, dispatch_client=client)
    port = relay_config.server.port

    task = asyncio.create_task(app.run())
    try:
        assert await _wait_for_ping(f"http://127.0.0.1:{port}/get") == 200

        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"http://127.0.0.1:{port}/api/submit",
                json={"uid": "1001", "command": "heal"},
            ) as response:
                assert response.status == 200
                assert (await response.json())["data"]["message"] == "Executed: heal"
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=5.0)

    assert dispatch_server.commands == ["heal"]
    assert app.rate_gate.entry_count == 1


@pytest.mark.asyncio
async def test_app_stops_on_cancel(relay_config, dispatch_config):
    app = RelayApp(relay_config, dispatch_client=DispatchClient(dispatch_config))

    task = asyncio.create_task(app.run())
    await _wait_for_ping(f"http://127.0.0.1:{relay_config.server.port}/get")
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(aiohttp.ClientConnectionError):
        async with aiohttp.ClientSession() as session:
            await session.get(f"http://127.0.0.1:{relay_config.server.port}/get")
