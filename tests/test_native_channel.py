from __future__ import annotations

import asyncio
import json
import sys
import textwrap

import pytest

from void_vault.bridge import messages
from void_vault.bridge.config import BridgeConfig
from void_vault.bridge.errors import ChannelOpenFailure
from void_vault.bridge.messages import Output, Ready
from void_vault.bridge.native_channel import ChannelFactory, StdioNativeChannel, WebSocketNativeChannel

_STUB_HOST = textwrap.dedent(
    """
    import json
    import struct
    import sys

    def read():
        header = sys.stdin.buffer.read(4)
        if len(header) < 4:
            return None
        (n,) = struct.unpack("<I", header)
        return json.loads(sys.stdin.buffer.read(n).decode("utf-8"))

    def write(obj):
        raw = json.dumps(obj).encode("utf-8")
        sys.stdout.buffer.write(struct.pack("<I", len(raw)) + raw)
        sys.stdout.buffer.flush()

    typed = []
    while True:
        msg = read()
        if msg is None:
            break
        if msg.get("type") == "ACTIVATE":
            write({"status": "ready", "saved_counter": 2, "active_counter": 2})
        elif "charCode" in msg:
            typed.append(msg["charCode"])
            write({"output": "".join(chr(c) for c in typed)})
        elif msg.get("type") == "FINALIZE":
            break
    """
)


def _stub_argv(tmp_path) -> list[str]:
    script = tmp_path / "stub_host.py"
    script.write_text(_STUB_HOST, encoding="utf-8")
    return [sys.executable, "-u", str(script)]


def test_open_requires_running_loop(tmp_path) -> None:
    with pytest.raises(ChannelOpenFailure):
        StdioNativeChannel(_stub_argv(tmp_path))


def test_stdio_round_trip_and_close(tmp_path) -> None:
    async def _run():
        ch = StdioNativeChannel(_stub_argv(tmp_path))
        received = []
        disconnects = []
        got_two = asyncio.Event()

        def _on_message(msg):
            received.append(msg)
            if len(received) == 2:
                got_two.set()

        ch.on_message(_on_message)
        ch.on_disconnect(disconnects.append)
        ch.send(messages.init("example.com"))
        ch.send(messages.char(ord("é")))
        await asyncio.wait_for(got_two.wait(), timeout=10)
        opened = ch.opened

        ch.close()
        ch.close()
        await asyncio.wait_for(ch._task, timeout=10)
        return received, disconnects, opened

    received, disconnects, opened = asyncio.run(_run())
    assert opened is True
    assert received == [Ready(2, 2, 0, 127), Output("é")]
    assert disconnects == [None]


def test_stdio_host_exit_is_a_disconnect(tmp_path) -> None:
    async def _run():
        ch = StdioNativeChannel(_stub_argv(tmp_path))
        gone = asyncio.get_running_loop().create_future()
        ch.on_disconnect(gone.set_result)
        ch.send(messages.finalize())
        error = await asyncio.wait_for(gone, timeout=10)
        await asyncio.wait_for(ch._task, timeout=10)
        # sends after the disconnect are dropped silently
        ch.send(messages.reset())
        return error

    assert asyncio.run(_run()) == "Native host has exited."


def test_stdio_spawn_failure_never_opens(tmp_path) -> None:
    async def _run():
        ch = StdioNativeChannel([str(tmp_path / "does-not-exist")])
        errors = []
        ch.on_disconnect(errors.append)
        await asyncio.wait_for(ch._task, timeout=10)
        return errors, ch.opened

    [error], opened = asyncio.run(_run())
    assert opened is False
    assert error.startswith("Failed to start native messaging host")


def test_factory_reports_missing_binary(tmp_path) -> None:
    factory = ChannelFactory(BridgeConfig(host_binary=str(tmp_path / "missing")))
    with pytest.raises(ChannelOpenFailure, match="not found"):
        factory()

    factory = ChannelFactory(BridgeConfig(host_binary="void-vault-definitely-not-on-path"))
    with pytest.raises(ChannelOpenFailure, match="not found"):
        factory()


def test_factory_websocket_requires_url() -> None:
    factory = ChannelFactory(BridgeConfig(transport="websocket", gateway_url=None))
    with pytest.raises(ChannelOpenFailure, match="VOID_VAULT_GATEWAY_URL"):
        factory()


def test_websocket_gateway_round_trip() -> None:
    try:
        import websockets  # type: ignore[import-not-found]
    except Exception:
        pytest.skip("websockets not installed")

    async def _run():
        seen = []

        async def _handler(ws):  # type: ignore[no-untyped-def]
            async for raw in ws:
                msg = json.loads(raw)
                seen.append(msg)
                if msg.get("type") == "ACTIVATE":
                    await ws.send(json.dumps({"status": "ready", "saved_counter": 0, "active_counter": 0}))
                elif msg.get("type") == "FINALIZE":
                    await ws.close()
                    return

        server = await websockets.serve(_handler, "127.0.0.1", 0, ping_interval=None)
        try:
            port = server.sockets[0].getsockname()[1]
            ch = WebSocketNativeChannel(f"ws://127.0.0.1:{port}", open_timeout=5)
            ready = asyncio.get_running_loop().create_future()
            gone = asyncio.get_running_loop().create_future()
            ch.on_message(lambda msg: ready.done() or ready.set_result(msg))
            ch.on_disconnect(lambda error: gone.done() or gone.set_result(error))

            ch.send(messages.init("example.com"))
            first = await asyncio.wait_for(ready, timeout=10)
            opened = ch.opened
            ch.send(messages.finalize())
            error = await asyncio.wait_for(gone, timeout=10)
            await asyncio.wait_for(ch._task, timeout=10)
        finally:
            server.close()
            await server.wait_closed()
        return seen, first, error, opened

    seen, first, error, opened = asyncio.run(_run())
    assert opened is True
    assert seen == [{"type": "ACTIVATE", "domain": "example.com"}, {"type": "FINALIZE"}]
    assert first == Ready(0, 0, 0, 127)
    assert error == "Gateway closed the connection."


def test_websocket_gateway_unreachable() -> None:
    try:
        import websockets  # type: ignore[import-not-found]  # noqa: F401
    except Exception:
        pytest.skip("websockets not installed")

    async def _run():
        ch = WebSocketNativeChannel("ws://127.0.0.1:9", open_timeout=2)
        errors = []
        ch.on_disconnect(errors.append)
        await asyncio.wait_for(ch._task, timeout=10)
        return errors, ch.opened

    [error], opened = asyncio.run(_run())
    assert opened is False
    assert error.startswith("Gateway unreachable")
