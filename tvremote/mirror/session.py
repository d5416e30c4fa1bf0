"""Mirroring setup: serve frames locally and have the TV browser pull them."""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass

from tvremote.control.channel import ControlChannel
from tvremote.mirror.hub import FrameHub

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8899
DEFAULT_FPS = 12


@dataclass
class MirrorResult:
    ok: bool
    detail: str
    url: str | None = None


def local_ipv4(probe_host: str = "8.8.8.8") -> str | None:
    """LAN address this host would use to reach ``probe_host``.

    No packet is sent: connecting a UDP socket only selects a route.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(2)
            sock.connect((probe_host, 80))
            ip = sock.getsockname()[0]
    except OSError as exc:
        logger.warning("Could not determine local IPv4 address: %s", exc)
        return None
    if not ip or ip.startswith("127.") or ip == "0.0.0.0":
        return None
    return ip


async def start_mirroring(
    channel: ControlChannel,
    hub: FrameHub,
    port: int = DEFAULT_PORT,
    fps: int = DEFAULT_FPS,
    local_ip: str | None = None,
    placeholder: bytes | None = None,
) -> MirrorResult:
    """Start ``hub`` and ask the connected TV to open its viewer page.

    ``placeholder`` (a JPEG) is published first so the TV has something to
    show before the capture source produces its first frame.
    """
    if not channel.state.is_connected:
        logger.error("start_mirroring: TV not connected")
        return MirrorResult(False, "TV not connected")

    ip = local_ip or local_ipv4()
    if not ip:
        return MirrorResult(False, "No local IPv4 address")

    if not await hub.start(port, fps):
        return MirrorResult(False, f"Could not start HTTP server on port {port}")

    if placeholder is not None:
        hub.publish_frame(placeholder)

    # Cache-busting query so the TV browser doesn't reuse a stale page.
    url = f"http://{ip}:{hub.port}/?t={int(time.time() * 1000)}"
    logger.info("start_mirroring: opening %s on the TV", url)
    if not await channel.open_browser(url):
        return MirrorResult(False, "Browser launch was not delivered", url)
    return MirrorResult(True, f"TV opening {url}", url)
