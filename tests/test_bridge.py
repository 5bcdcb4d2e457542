"""Tests for the WebSocket bridge and the command-line entry point."""

from __future__ import annotations

import asyncio
import json

import pytest
import websockets

from bobi.bridge.server import BridgeServer
from bobi.core.config import Settings
from bobi.core.orchestrator import Orchestrator
from bobi.main import main, parse_args


def _refusing_factory(settings, config):
    raise RuntimeError("offline")


@pytest.fixture
async def bridge():
    orchestrator = Orchestrator(Settings(), session_factory=_refusing_factory)
    server = BridgeServer(orchestrator, host="127.0.0.1", port=0)
    await server.start()
    yield server, orchestrator
    await server.stop()
    await orchestrator.stop()


async def _recv(ws) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=1.0))


async def _recv_until(ws, msg_type: str) -> dict:
    while True:
        message = await _recv(ws)
        if message["type"] == msg_type:
            return message


class TestBridgeServer:
    async def test_status_sent_on_connect(self, bridge) -> None:
        server, _ = bridge
        async with websockets.connect(f"ws://127.0.0.1:{server.port}") as ws:
            message = await _recv(ws)
            assert message["type"] == "status"
            assert message["payload"]["state"] == "IDLE"
            assert isinstance(message["ts"], (int, float))
            assert server.client_count == 1

    async def test_client_message_reaches_orchestrator(self, bridge) -> None:
        server, orchestrator = bridge
        async with websockets.connect(f"ws://127.0.0.1:{server.port}") as ws:
            await _recv(ws)
            await ws.send(json.dumps({"type": "wake"}))
            change = await _recv_until(ws, "state_change")
            assert change["payload"] == {"state": "LISTENING", "previous": "IDLE"}
            assert orchestrator.state_machine.is_awake()

            error = await _recv_until(ws, "error")
            assert "offline" in error["payload"]["message"]

    async def test_invalid_messages_keep_connection(self, bridge) -> None:
        server, _ = bridge
        async with websockets.connect(f"ws://127.0.0.1:{server.port}") as ws:
            await _recv(ws)
            await ws.send("not json{")
            await ws.send(json.dumps(["a", "list"]))
            await ws.send(json.dumps({"type": "get_status"}))
            message = await _recv(ws)
            assert message["type"] == "status"

    async def test_broadcast_reaches_every_client(self, bridge) -> None:
        server, orchestrator = bridge
        url = f"ws://127.0.0.1:{server.port}"
        async with websockets.connect(url) as a, websockets.connect(url) as b:
            await _recv(a)
            await _recv(b)
            await orchestrator.gimbal_touched()
            for ws in (a, b):
                update = await _recv_until(ws, "device_update")
                assert update["payload"]["mood"] == "surprised"

    async def test_disconnect_removes_client(self, bridge) -> None:
        server, _ = bridge
        async with websockets.connect(f"ws://127.0.0.1:{server.port}") as ws:
            await _recv(ws)
        await asyncio.sleep(0.05)
        assert server.client_count == 0


class TestMain:
    def test_parse_args(self) -> None:
        args = parse_args(["--stub-camera", "--config", "custom.yaml"])
        assert args.stub_camera is True
        assert args.wake_word is False
        assert str(args.config) == "custom.yaml"

    def test_bad_provider_exits_with_config_error(self, tmp_path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("LLM_PROVIDER", "nobody")
        code = main(["--env", str(tmp_path / "missing.env"), "--config", str(tmp_path / "none.yaml")])
        assert code == 2
        assert "Configuration error" in capsys.readouterr().err
