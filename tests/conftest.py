"""pytest configuration and shared fixtures for tvremote tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web

from tvremote.control import ControlChannel
from tvremote.control.protocol import CHANNEL_NAME


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class FakeTV:
    """In-process TV speaking the remote-control WebSocket protocol.

    ``mode`` decides the handshake verdict: ``"accept"`` sends
    ``ms.channel.connect`` (with ``issue_token`` when set), ``"reject"``
    sends ``ms.channel.unauthorized``, ``"silent"`` never answers.
    """

    def __init__(self) -> None:
        self.mode = "accept"
        self.issue_token: str | None = "tok-123"
        self.preamble = ["ms.channel.clientConnect", "ed.edenTV.update"]
        self.app_list_reply: list[dict] | None = None
        self.received: list[dict] = []
        self.connections: list[dict[str, str]] = []
        self.active = 0
        self.sockets: set[web.WebSocketResponse] = set()
        self.port: int | None = None

    async def handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections.append(dict(request.query))
        self.active += 1
        self.sockets.add(ws)
        try:
            for event in self.preamble:
                await ws.send_json({"event": event, "data": {}})
            if self.mode == "accept":
                data: dict[str, Any] = {"id": "client-1", "clients": []}
                if self.issue_token:
                    data["token"] = self.issue_token
                await ws.send_json({"event": "ms.channel.connect", "data": data})
            elif self.mode == "reject":
                await ws.send_json({"event": "ms.channel.unauthorized"})

            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    continue
                frame = json.loads(msg.data)
                self.received.append(frame)
                params = frame.get("params", {})
                if params.get("event") == "ed.installedApp.get" and self.app_list_reply is not None:
                    await self.reply_app_list(ws, self.app_list_reply)
        finally:
            self.active -= 1
            self.sockets.discard(ws)
        return ws

    async def reply_app_list(self, ws: web.WebSocketResponse, apps: list[dict]) -> None:
        await ws.send_json({
            "event": "ed.installedApp.get",
            "from": "host",
            "data": {"data": apps},
        })

    async def push(self, payload: Any) -> None:
        """Send ``payload`` (dict as JSON, str verbatim) to every client."""
        for ws in list(self.sockets):
            if isinstance(payload, str):
                await ws.send_str(payload)
            else:
                await ws.send_json(payload)

    async def drop_all(self) -> None:
        for ws in list(self.sockets):
            await ws.close()

    def remote_controls(self) -> list[dict]:
        return [f["params"] for f in self.received if f.get("method") == "ms.remote.control"]

    def emits(self) -> list[dict]:
        return [f["params"] for f in self.received if f.get("method") == "ms.channel.emit"]


@pytest_asyncio.fixture
async def fake_tv():
    tv = FakeTV()
    app = web.Application()
    app.router.add_get(f"/api/v2/channels/{CHANNEL_NAME}", tv.handler)
    runner = web.AppRunner(app, shutdown_timeout=1.0)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    tv.port = runner.addresses[0][1]
    yield tv
    await tv.drop_all()
    await runner.cleanup()


@pytest_asyncio.fixture
async def channel():
    ch = ControlChannel(
        handshake_timeout=1.0,
        token_handshake_timeout=0.5,
        backoff_base=0.05,
        backoff_max=0.2,
    )
    yield ch
    await ch.aclose()


@pytest_asyncio.fixture
async def connected(fake_tv, channel):
    """A channel that completed the handshake against ``fake_tv``."""
    await channel.connect("127.0.0.1", fake_tv.port, "Test Remote")
    assert await channel.wait_for_state(lambda s: s.is_connected, timeout=3.0)
    return channel
