"""Message channels to the generator process.

A channel is fire-and-forget and order preserving in both directions. It carries
no timeouts and no request/response correlation; callers that need an answer
pair a timer with a `CompletionLatch` (see `latch.py`).

Opening a channel is synchronous, like `chrome.runtime.connectNative()`: the
transport starts in a background task on the running loop, outbound messages
queue until it is up, and a failure after that point shows up as a disconnect.
`opened` stays False when the transport never came up, which callers report as
an open failure rather than a dropped connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
from collections.abc import Callable
from typing import Any

from .config import BridgeConfig
from .errors import ChannelOpenFailure
from .messages import GeneratorMessage, encode_frame, parse_message, read_frame

_LOGGER = logging.getLogger("vault.bridge.channel")

MessageHandler = Callable[[GeneratorMessage], None]
DisconnectHandler = Callable[[str | None], None]


class NativeChannel:
    """Base channel: handler registration plus exactly-once disconnect delivery."""

    def __init__(self) -> None:
        self._message_handlers: list[MessageHandler] = []
        self._disconnect_handlers: list[DisconnectHandler] = []
        self._disconnected = False
        self._closed = False
        self._opened = True

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def opened(self) -> bool:
        """False while a background transport has not come up yet, and forever if it never does."""
        return self._opened

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def send(self, message: dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_transport()
        self._emit_disconnect(None)

    def _close_transport(self) -> None:
        pass

    def _emit_message(self, obj: dict[str, Any]) -> None:
        if self._disconnected:
            return
        msg = parse_message(obj)
        for handler in list(self._message_handlers):
            try:
                handler(msg)
            except Exception:  # noqa: BLE001
                # remaining handlers still run
                _LOGGER.exception("channel_message_handler_failed type=%s", type(msg).__name__)

    def _emit_disconnect(self, error: str | None) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        for handler in list(self._disconnect_handlers):
            try:
                handler(error)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("channel_disconnect_handler_failed")


class _QueuedChannel(NativeChannel):
    """Shared plumbing for transports driven by one background task and an outbox queue.

    `close()` enqueues a sentinel rather than cancelling, so messages sent just
    before closing (FINALIZE) still reach the generator.
    """

    def __init__(self) -> None:
        super().__init__()
        self._opened = False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise ChannelOpenFailure("A running event loop is required to open a channel") from exc
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._task = loop.create_task(self._run())

    def send(self, message: dict[str, Any]) -> None:
        if self._disconnected:
            _LOGGER.debug("channel_send_dropped reason=disconnected")
            return
        self._outbox.put_nowait(message)

    def _close_transport(self) -> None:
        self._outbox.put_nowait(None)

    def _fail(self, error: str) -> None:
        self._emit_disconnect(error)
        self._task.cancel()

    async def _run(self) -> None:
        raise NotImplementedError


class StdioNativeChannel(_QueuedChannel):
    """Spawns the generator host and speaks Native Messaging framing over its stdio."""

    def __init__(self, argv: list[str]) -> None:
        self._argv = list(argv)
        self._proc: asyncio.subprocess.Process | None = None
        super().__init__()

    async def _write_loop(self, stdin: asyncio.StreamWriter) -> None:
        while True:
            msg = await self._outbox.get()
            if msg is None:
                # EOF on stdin ends the host's read loop; kill it if it lingers.
                await self._terminate()
                return
            try:
                stdin.write(encode_frame(msg))
                await stdin.drain()
            except (ConnectionError, RuntimeError) as exc:
                self._fail(f"Error when communicating with the native messaging host: {exc}")
                return

    async def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        with contextlib.suppress(Exception):
            if proc.stdin is not None:
                proc.stdin.close()
        try:
            await asyncio.wait_for(proc.wait(), timeout=0.5)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            with contextlib.suppress(Exception):
                await proc.wait()

    async def _run(self) -> None:
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            _LOGGER.warning("native_host_spawn_failed argv0=%s error=%s", self._argv[0], exc)
            self._emit_disconnect(f"Failed to start native messaging host: {exc}")
            return

        self._opened = True

        assert self._proc.stdin is not None and self._proc.stdout is not None
        writer = asyncio.create_task(self._write_loop(self._proc.stdin))
        try:
            while True:
                obj = await read_frame(self._proc.stdout)
                if obj is None:
                    break
                self._emit_message(obj)
        finally:
            writer.cancel()
            await self._terminate()
            self._emit_disconnect("Native host has exited.")


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except ImportError as exc:
        raise ChannelOpenFailure(
            "The websocket transport requires the 'websockets' Python package. "
            "Install it (pip install websockets) or set VOID_VAULT_TRANSPORT=native."
        ) from exc


class WebSocketNativeChannel(_QueuedChannel):
    """JSON text frames over a local WebSocket gateway that fronts the generator."""

    def __init__(self, url: str, *, open_timeout: float = 5.0) -> None:
        self._websockets = _import_websockets()
        self._url = url
        self._open_timeout = float(open_timeout)
        super().__init__()

    async def _write_loop(self, ws: Any) -> None:
        while True:
            msg = await self._outbox.get()
            if msg is None:
                await ws.close()
                return
            try:
                await ws.send(json.dumps(msg, ensure_ascii=False))
            except self._websockets.exceptions.WebSocketException as exc:
                self._fail(f"Gateway send failed: {exc}")
                return

    async def _run(self) -> None:
        websockets = self._websockets
        error = "Gateway closed the connection."
        try:
            async with websockets.connect(self._url, open_timeout=self._open_timeout, ping_interval=None) as ws:
                self._opened = True
                writer = asyncio.create_task(self._write_loop(ws))
                try:
                    async for raw in ws:
                        try:
                            obj = json.loads(raw)
                        except ValueError:
                            _LOGGER.debug("gateway_frame_undecodable")
                            continue
                        if isinstance(obj, dict):
                            self._emit_message(obj)
                finally:
                    writer.cancel()
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
            _LOGGER.warning("gateway_connection_failed url=%s error=%s", self._url, exc)
            error = f"Gateway unreachable: {exc}"
        self._emit_disconnect(error)


class ChannelFactory:
    """Opens a fresh channel per session or one-shot query, per `BridgeConfig.transport`."""

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config

    def _resolve_binary(self) -> str:
        raw = self.config.host_binary
        if os.sep in raw or (os.altsep and os.altsep in raw):
            if os.path.isfile(raw) and os.access(raw, os.X_OK):
                return raw
            raise ChannelOpenFailure(f"Specified native messaging host not found: {raw}")
        found = shutil.which(raw)
        if not found:
            raise ChannelOpenFailure(f"Specified native messaging host not found: {raw}")
        return found

    def __call__(self) -> NativeChannel:
        if self.config.transport == "websocket":
            url = (self.config.gateway_url or "").strip()
            if not url:
                raise ChannelOpenFailure("VOID_VAULT_GATEWAY_URL is required for the websocket transport")
            return WebSocketNativeChannel(url, open_timeout=self.config.query_timeout)
        return StdioNativeChannel([self._resolve_binary(), *self.config.host_args])
