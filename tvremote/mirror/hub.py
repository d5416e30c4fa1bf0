"""Latest-frame hub with an embedded MJPEG server.

A capture source publishes JPEG frames into a single slot (last write wins,
never queued). Every viewer connected to ``/mjpeg`` runs its own delivery loop
that re-reads the slot at the configured rate and writes one multipart
section per tick, so slow or vanished viewers never hold up the producer or
each other.

Endpoints:
  GET /       — viewer page embedding the stream
  GET /mjpeg  — ``multipart/x-mixed-replace; boundary=frame``
  GET /ping   — ``ok``

Uses :mod:`aiohttp.web` for the HTTP server.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from dataclasses import dataclass

from aiohttp import web

logger = logging.getLogger(__name__)

BOUNDARY = "frame"
_MIN_INTERVAL_MS = 10
_IDLE_POLL = 0.02
_SHUTDOWN_TIMEOUT = 2.0

VIEWER_HTML = """<!doctype html>
<html>
<head>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <style>
    html,body{margin:0;padding:0;background:#000;height:100%}
    img{width:100vw;height:100vh;object-fit:contain}
  </style>
</head>
<body>
  <img src="/mjpeg"/>
</body>
</html>
"""


@dataclass(frozen=True)
class Frame:
    jpeg: bytes
    sequence: int


def encode_part(jpeg: bytes) -> bytes:
    """One multipart section: boundary, part headers, JPEG bytes, CRLF."""
    header = (
        f"--{BOUNDARY}\r\n"
        "Content-Type: image/jpeg\r\n"
        f"Content-Length: {len(jpeg)}\r\n"
        "\r\n"
    ).encode("ascii")
    return header + jpeg + b"\r\n"


def frame_interval(fps: int) -> float:
    """Seconds between sections: ``1000 / fps`` ms, never below 10 ms."""
    return max(_MIN_INTERVAL_MS, 1000 // max(1, fps)) / 1000.0


class FrameHub:
    """Single-slot frame store plus the HTTP server streaming it.

    Construct one per mirroring surface and drive :meth:`start` /
    :meth:`stop` explicitly. :meth:`publish_frame` may be called from any
    thread; everything else belongs to the event loop.
    """

    def __init__(self, host: str = "0.0.0.0") -> None:
        self.host = host
        self._slot: Frame | None = None
        self._slot_lock = threading.Lock()
        self._sequence = 0

        self._runner: web.AppRunner | None = None
        self._closing: asyncio.Event | None = None
        self._requested_port: int | None = None
        self._bound_port: int | None = None
        self._fps: int | None = None
        self._clients = 0
        self._lifecycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> bool:
        return self._runner is not None

    @property
    def port(self) -> int | None:
        """Port actually bound (differs from the requested one for port 0)."""
        return self._bound_port

    @property
    def fps(self) -> int | None:
        return self._fps

    @property
    def client_count(self) -> int:
        return self._clients

    @property
    def latest_frame(self) -> Frame | None:
        return self._slot

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self, port: int, fps: int = 12) -> bool:
        """Serve on ``port`` at ``fps``. Returns ``False`` if the port can't be bound.

        A call matching the running configuration is a no-op; any other
        configuration restarts the server, ending existing viewers.
        """
        async with self._lifecycle_lock:
            if self._runner is not None and self._requested_port == port and self._fps == fps:
                return True
            await self._stop_locked()

            closing = asyncio.Event()
            app = web.Application()
            app.router.add_get("/", self._handle_index)
            app.router.add_get(
                "/mjpeg",
                functools.partial(self._handle_stream, closing=closing, interval=frame_interval(fps)),
            )
            app.router.add_get("/ping", self._handle_ping)

            runner = web.AppRunner(app, access_log=None, shutdown_timeout=_SHUTDOWN_TIMEOUT)
            await runner.setup()
            try:
                site = web.TCPSite(runner, self.host, port)
                await site.start()
            except OSError as exc:
                logger.error("MJPEG server failed to bind %s:%d: %s", self.host, port, exc)
                await runner.cleanup()
                return False

            addresses = runner.addresses
            self._bound_port = addresses[0][1] if addresses else port
            self._runner = runner
            self._closing = closing
            self._requested_port = port
            self._fps = fps
            logger.info("MJPEG server started port=%d fps=%d", self._bound_port, fps)
            return True

    async def stop(self) -> None:
        """Release the socket, end all viewers and drop the held frame. Idempotent."""
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        runner, closing = self._runner, self._closing
        self._runner = None
        self._closing = None
        self._requested_port = None
        self._bound_port = None
        self._fps = None
        with self._slot_lock:
            self._slot = None
        if closing is not None:
            closing.set()
        if runner is not None:
            await runner.cleanup()
            logger.info("MJPEG server stopped")

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #

    def publish_frame(self, jpeg: bytes) -> bool:
        """Replace the held frame. Never blocks; dropped while stopped."""
        if self._runner is None:
            return False
        frame_bytes = bytes(jpeg)
        with self._slot_lock:
            self._sequence += 1
            self._slot = Frame(frame_bytes, self._sequence)
        return True

    # ------------------------------------------------------------------ #
    # HTTP handlers
    # ------------------------------------------------------------------ #

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.Response(text=VIEWER_HTML, content_type="text/html", charset="utf-8")

    async def _handle_ping(self, request: web.Request) -> web.Response:
        return web.Response(text="ok", content_type="text/plain")

    async def _handle_stream(
        self,
        request: web.Request,
        *,
        closing: asyncio.Event,
        interval: float,
    ) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": f"multipart/x-mixed-replace; boundary={BOUNDARY}",
                "Cache-Control": "no-cache, private",
                "Pragma": "no-cache",
            },
        )
        response.enable_chunked_encoding()
        await response.prepare(request)

        self._clients += 1
        logger.info("Viewer connected %s (%d active)", request.remote, self._clients)
        sent = 0
        try:
            while not closing.is_set():
                frame = self._slot
                if frame is None:
                    wait = _IDLE_POLL
                else:
                    await response.write(encode_part(frame.jpeg))
                    sent += 1
                    wait = interval
                try:
                    await asyncio.wait_for(closing.wait(), wait)
                except asyncio.TimeoutError:
                    pass
        except (ConnectionError, OSError) as exc:
            logger.debug("Viewer %s went away: %s", request.remote, exc)
        finally:
            self._clients -= 1
            logger.info("Viewer disconnected %s after %d frames", request.remote, sent)
        return response
