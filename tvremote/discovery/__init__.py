"""tvremote.discovery — finding TVs on the local network.

Exports:
    DiscoveredDevice   — dataclass for one SSDP responder
    DiscoveryScanner   — async SSDP scanner with descriptor enrichment
    DeviceDescriptor   — fields parsed from a UPnP descriptor
    send_magic_packet  — Wake-on-LAN helper
"""

from __future__ import annotations

from tvremote.discovery.descriptor import DeviceDescriptor
from tvremote.discovery.ssdp import DiscoveredDevice, DiscoveryScanner
from tvremote.discovery.wol import send_magic_packet

__all__ = [
    "DeviceDescriptor",
    "DiscoveredDevice",
    "DiscoveryScanner",
    "send_magic_packet",
]
