"""SSDP scanner for Samsung TVs.

Runs one ``async_upnp_client`` search per search target and reads the
responses until the scan window closes. A responder is accepted when its
headers name Samsung, or when its UPnP descriptor (``LOCATION``) does.
Results are de-duplicated by ``(ip, usn)`` within one scan.

Every search opens its own UDP listener for the duration of one
:meth:`DiscoveryScanner.scan` call, so scans are independent and may run
concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Mapping
from urllib.parse import urlparse

from async_upnp_client.aiohttp import AiohttpRequester
from async_upnp_client.client import UpnpRequester
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.search import async_search

from tvremote.discovery.descriptor import DeviceDescriptor, fetch_descriptor

logger = logging.getLogger(__name__)

SSDP_GROUP = "239.255.255.250"
SSDP_PORT = 1900

SEARCH_TARGETS: tuple[str, ...] = (
    "urn:samsung.com:device:RemoteControlReceiver:1",
    "urn:dial-multiscreen-org:service:dial:1",
)


@dataclass
class DiscoveredDevice:
    """A TV that answered an SSDP search. Identity is ``(ip, usn)``."""

    ip: str
    location: str | None = None
    st: str | None = None
    usn: str | None = None
    server: str | None = None
    friendly_name: str | None = None
    model_name: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.ip, self.usn or "")


def normalize_headers(headers: Mapping) -> dict[str, str]:
    """Plain dict with lower-cased keys (``_host`` and friends included)."""
    return {str(key).lower(): str(value).strip() for key, value in headers.items()}


def looks_samsung(st: str | None, usn: str | None, server: str | None) -> bool:
    return (
        "samsung.com" in (st or "").lower()
        or "samsung.com" in (usn or "").lower()
        or "samsung" in (server or "").lower()
    )


def responder_ip(headers: Mapping[str, str]) -> str | None:
    """Source address of a response, or the ``LOCATION`` host as a fallback."""
    host = headers.get("_host")
    if host:
        return host
    location = headers.get("location")
    if location:
        return urlparse(location).hostname
    return None


class DiscoveryScanner:
    """Finite, restartable SSDP scan for Samsung TVs.

    Parameters
    ----------
    requester:
        Optional :class:`UpnpRequester` for descriptor fetches. An
        :class:`AiohttpRequester` is used when omitted.
    search_targets:
        ``ST`` values to search for, one search each.
    multicast_addr:
        Destination of the searches (the SSDP group by default).
    descriptor_timeout:
        Upper bound for one descriptor fetch; it is further capped by what
        is left of the scan window.
    """

    def __init__(
        self,
        requester: UpnpRequester | None = None,
        *,
        search_targets: tuple[str, ...] = SEARCH_TARGETS,
        multicast_addr: tuple[str, int] = (SSDP_GROUP, SSDP_PORT),
        descriptor_timeout: float = 2.0,
    ) -> None:
        if requester is None:
            requester = AiohttpRequester(timeout=descriptor_timeout)
        self._factory = UpnpFactory(requester, non_strict=True)
        self.search_targets = search_targets
        self.multicast_addr = multicast_addr
        self.descriptor_timeout = descriptor_timeout
        self.last_error: str | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def scan(self, duration: float = 2.5) -> AsyncIterator[DiscoveredDevice]:
        """Yield matching TVs as they answer, for ``duration`` seconds.

        If no search can open its UDP socket the scan yields nothing and
        :attr:`last_error` describes why.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration
        queue: asyncio.Queue = asyncio.Queue()
        self.last_error = None

        async def on_response(headers: Mapping) -> None:
            queue.put_nowait(normalize_headers(headers))

        tasks = [
            asyncio.create_task(self._search(st, on_response, duration, queue))
            for st in self.search_targets
        ]
        running = len(tasks)
        seen: set[tuple[str, str]] = set()
        descriptors: dict[str, DeviceDescriptor | None] = {}
        found = 0
        try:
            while running:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    headers = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break
                if headers is None:
                    running -= 1
                    continue
                device = await self._evaluate(headers, seen, descriptors, deadline)
                if device is not None:
                    found += 1
                    logger.info("Found TV %s (%s)", device.ip, device.friendly_name or device.usn)
                    yield device
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("SSDP scan complete: %d TV(s) found", found)

    async def discover(self, duration: float = 2.5) -> list[DiscoveredDevice]:
        """Run :meth:`scan` to completion and return every device found."""
        return [device async for device in self.scan(duration)]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    async def _search(self, st: str, callback, duration: float, queue: asyncio.Queue) -> None:
        """One search target; a ``None`` on ``queue`` marks it finished."""
        try:
            await async_search(
                async_callback=callback,
                # MX must be a whole number of seconds.
                timeout=max(1, int(duration)),
                search_target=st,
                target=self.multicast_addr,
            )
        except OSError as exc:
            self.last_error = f"cannot open SSDP socket: {exc}"
            logger.error("SSDP search for %s failed: %s", st, exc)
        finally:
            queue.put_nowait(None)

    async def _evaluate(
        self,
        headers: dict[str, str],
        seen: set[tuple[str, str]],
        descriptors: dict[str, DeviceDescriptor | None],
        deadline: float,
    ) -> DiscoveredDevice | None:
        """Classify one response; returns a new device or ``None``."""
        ip = responder_ip(headers)
        if not ip:
            return None
        st = headers.get("st") or headers.get("nt")
        usn = headers.get("usn")
        server = headers.get("server")
        location = headers.get("location") or None

        by_headers = looks_samsung(st, usn, server)
        if not by_headers and not location:
            return None

        key = (ip, usn or "")
        if key in seen:
            return None

        meta = None
        if location:
            if location not in descriptors:
                descriptors[location] = await self._fetch(location, deadline)
            meta = descriptors[location]

        if not by_headers and not (meta is not None and meta.is_samsung):
            logger.debug("Ignoring non-Samsung responder %s (%s)", ip, server)
            return None

        seen.add(key)
        return DiscoveredDevice(
            ip=ip,
            location=location,
            st=st,
            usn=usn,
            server=server,
            friendly_name=meta.friendly_name if meta else None,
            model_name=meta.model_name if meta else None,
        )

    async def _fetch(self, location: str, deadline: float) -> DeviceDescriptor | None:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return None
        return await fetch_descriptor(self._factory, location, min(self.descriptor_timeout, remaining))
