"""tvremote.mirror — screen mirroring through the TV's web browser.

Exports:
    FrameHub         — latest-frame store + MJPEG HTTP server
    Frame            — one published JPEG with its sequence number
    MirrorResult     — outcome of :func:`start_mirroring`
    start_mirroring  — start the hub and point the TV browser at it
"""

from __future__ import annotations

from tvremote.mirror.hub import Frame, FrameHub
from tvremote.mirror.session import MirrorResult, local_ipv4, start_mirroring

__all__ = [
    "Frame",
    "FrameHub",
    "MirrorResult",
    "local_ipv4",
    "start_mirroring",
]
