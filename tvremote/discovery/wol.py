"""Wake-on-LAN for powering on a TV by MAC address.

Uses :mod:`wakeonlan`. TVs with networked standby need the packet to be
sent while they are still on the same LAN segment.
"""

from __future__ import annotations

import logging

import wakeonlan

logger = logging.getLogger(__name__)


def build_magic_packet(mac: str) -> bytes:
    """Six ``0xFF`` bytes followed by the MAC repeated 16 times.

    Raises:
        ValueError: ``mac`` is not 12 hex digits (``:``/``-``/``.`` separators allowed).
    """
    return wakeonlan.create_magic_packet(mac.strip())


def send_magic_packet(mac: str, broadcast: str = "255.255.255.255", port: int = 9) -> bool:
    """Broadcast a magic packet. Returns ``False`` on a bad MAC or socket error."""
    try:
        build_magic_packet(mac)
    except ValueError as exc:
        logger.warning("WOL not sent to %r: %s", mac, exc)
        return False
    try:
        wakeonlan.send_magic_packet(mac.strip(), ip_address=broadcast, port=port)
    except OSError as exc:
        logger.warning("WOL send to %s:%d failed: %s", broadcast, port, exc)
        return False
    logger.info("WOL packet sent to %s via %s:%d", mac, broadcast, port)
    return True
