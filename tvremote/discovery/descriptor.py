"""UPnP device descriptor lookup.

SSDP responses carry a ``LOCATION`` header pointing at an XML document that
names the device (``friendlyName``, ``modelName``) and its vendor
(``manufacturer``, ``deviceType``). The document is fetched and parsed by
``async_upnp_client``'s :class:`UpnpFactory`; only the root device's fields
are kept.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import aiohttp
from async_upnp_client.client import UpnpDevice
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.exceptions import UpnpError

logger = logging.getLogger(__name__)

VENDOR_MARKER = "samsung"


@dataclass
class DeviceDescriptor:
    friendly_name: str | None = None
    model_name: str | None = None
    manufacturer: str | None = None
    device_type: str | None = None

    @property
    def is_samsung(self) -> bool:
        manufacturer = (self.manufacturer or "").lower()
        device_type = (self.device_type or "").lower()
        return VENDOR_MARKER in manufacturer or VENDOR_MARKER in device_type

    @classmethod
    def from_device(cls, device: UpnpDevice) -> "DeviceDescriptor":
        return cls(
            friendly_name=device.friendly_name or None,
            model_name=device.model_name or None,
            manufacturer=device.manufacturer or None,
            device_type=device.device_type or None,
        )


async def fetch_descriptor(
    factory: UpnpFactory,
    url: str,
    timeout: float = 2.0,
) -> DeviceDescriptor | None:
    """Fetch and parse the descriptor at ``url``; ``None`` on any failure."""
    try:
        device = await asyncio.wait_for(factory.async_create_device(url), timeout)
    except asyncio.TimeoutError:
        logger.debug("Descriptor fetch timed out %s", url)
        return None
    except (UpnpError, aiohttp.ClientError, ValueError) as exc:
        logger.debug("Descriptor fetch failed %s: %r", url, exc)
        return None
    return DeviceDescriptor.from_device(device)
