"""Tests for TV discovery: SSDP scanning, UPnP descriptors, Wake-on-LAN."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import pytest_asyncio
from aiohttp import web
from async_upnp_client.aiohttp import AiohttpRequester
from async_upnp_client.client_factory import UpnpFactory

from tvremote.discovery import ssdp
from tvremote.discovery.descriptor import DeviceDescriptor, fetch_descriptor
from tvremote.discovery.ssdp import (
    DiscoveryScanner,
    looks_samsung,
    normalize_headers,
    responder_ip,
)
from tvremote.discovery.wol import build_magic_packet, send_magic_packet

SAMSUNG_DESCRIPTOR = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:samsung.com:device:RemoteControlReceiver:1</deviceType>
    <friendlyName>[TV] Living Room</friendlyName>
    <manufacturer>Samsung Electronics</manufacturer>
    <modelName>QE55Q80T</modelName>
    <UDN>uuid:11111111-2222-3333-4444-555555555555</UDN>
    <deviceList>
      <device>
        <deviceType>urn:samsung.com:device:MainTVServer2:1</deviceType>
        <friendlyName>Embedded</friendlyName>
        <manufacturer>Samsung Electronics</manufacturer>
        <modelName>Embedded</modelName>
        <UDN>uuid:11111111-2222-3333-4444-666666666666</UDN>
      </device>
    </deviceList>
  </device>
</root>
"""

OTHER_DESCRIPTOR = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
    <friendlyName>Speaker</friendlyName>
    <manufacturer>Acme</manufacturer>
    <modelName>Boom 2</modelName>
    <UDN>uuid:aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee</UDN>
  </device>
</root>
"""

RCR = "urn:samsung.com:device:RemoteControlReceiver:1"


def ssdp_headers(
    st: str,
    usn: str,
    host: str = "192.168.1.20",
    server: str = "Linux/4.1 UPnP/1.0",
    location: str | None = None,
) -> dict[str, str]:
    """Response headers as the SSDP listener hands them to the callback."""
    headers = {"_host": host, "CACHE-CONTROL": "max-age=1800", "ST": st, "USN": usn, "SERVER": server}
    if location:
        headers["LOCATION"] = location
    return headers


class FakeSearch:
    """Stands in for ``async_search``: replays responses, then waits ``timeout``."""

    def __init__(self) -> None:
        self.responses: list[dict[str, str]] = []
        self.calls: list[dict] = []
        self.error: OSError | None = None

    async def __call__(self, async_callback, timeout=4, search_target="ssdp:all", source=None, target=None):
        self.calls.append({"search_target": search_target, "timeout": timeout, "target": target})
        if self.error is not None:
            raise self.error
        for headers in self.responses:
            await async_callback(dict(headers))
        await asyncio.sleep(timeout)


@pytest.fixture
def fake_search(monkeypatch):
    search = FakeSearch()
    monkeypatch.setattr(ssdp, "async_search", search)
    return search


@pytest_asyncio.fixture
async def descriptor_server():
    """Serves ``documents[name]`` at ``/name``; anything else is a 404."""
    documents: dict[str, str] = {}

    async def handler(request: web.Request) -> web.Response:
        body = documents.get(request.match_info["name"])
        if body is None:
            return web.Response(status=404)
        return web.Response(text=body, content_type="text/xml")

    app = web.Application()
    app.router.add_get("/{name}", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    yield SimpleNamespace(documents=documents, url=lambda name: f"http://127.0.0.1:{port}/{name}")
    await runner.cleanup()


# ──────────────────────────────────────────────────────────────────
# Response helpers
# ──────────────────────────────────────────────────────────────────


class TestSsdpHeaders:
    def test_normalize_lowercases_keys(self):
        headers = normalize_headers({"LOCATION": "http://10.0.0.2:7676/desc.xml ", "Usn": "uuid:abc", "_host": "10.0.0.2"})
        assert headers == {"location": "http://10.0.0.2:7676/desc.xml", "usn": "uuid:abc", "_host": "10.0.0.2"}

    def test_responder_ip_prefers_source_address(self):
        assert responder_ip({"_host": "10.0.0.2", "location": "http://10.0.0.9/d.xml"}) == "10.0.0.2"
        assert responder_ip({"location": "http://10.0.0.9:7676/d.xml"}) == "10.0.0.9"
        assert responder_ip({"usn": "uuid:x"}) is None

    def test_looks_samsung(self):
        assert looks_samsung(RCR, None, None)
        assert looks_samsung(None, "uuid:x::urn:Samsung.com:device", None)
        assert looks_samsung(None, None, "SHP, UPnP/1.0, Samsung UPnP SDK/1.0")
        assert not looks_samsung("upnp:rootdevice", "uuid:x", "Linux")


class TestDescriptor:
    def test_from_device(self):
        device = SimpleNamespace(
            friendly_name="[TV] Den",
            model_name="UE40",
            manufacturer="Samsung Electronics",
            device_type="urn:schemas-upnp-org:device:MediaRenderer:1",
        )
        desc = DeviceDescriptor.from_device(device)
        assert desc == DeviceDescriptor("[TV] Den", "UE40", "Samsung Electronics", device.device_type)
        assert desc.is_samsung

    def test_device_type_marker_is_enough(self):
        assert DeviceDescriptor(device_type="urn:samsung.com:device:X:1").is_samsung
        assert not DeviceDescriptor(manufacturer="Acme").is_samsung

    @pytest.mark.asyncio
    async def test_fetch_reports_root_device(self, descriptor_server):
        descriptor_server.documents["tv.xml"] = SAMSUNG_DESCRIPTOR
        factory = UpnpFactory(AiohttpRequester(), non_strict=True)
        desc = await fetch_descriptor(factory, descriptor_server.url("tv.xml"))
        assert desc.friendly_name == "[TV] Living Room"
        assert desc.model_name == "QE55Q80T"
        assert desc.is_samsung

    @pytest.mark.asyncio
    async def test_fetch_failures_return_none(self, descriptor_server):
        descriptor_server.documents["bad.xml"] = "not xml <"
        factory = UpnpFactory(AiohttpRequester(), non_strict=True)
        assert await fetch_descriptor(factory, descriptor_server.url("missing.xml")) is None
        assert await fetch_descriptor(factory, descriptor_server.url("bad.xml")) is None

    @pytest.mark.asyncio
    async def test_fetch_timeout_returns_none(self):
        class SlowFactory:
            async def async_create_device(self, url):
                await asyncio.sleep(5)

        assert await fetch_descriptor(SlowFactory(), "http://tv/desc.xml", timeout=0.1) is None


# ──────────────────────────────────────────────────────────────────
# Scanner
# ──────────────────────────────────────────────────────────────────


class TestDiscoveryScanner:
    @pytest.mark.asyncio
    async def test_header_match_and_dedup(self, fake_search):
        reply = ssdp_headers(RCR, "uuid:tv-1")
        fake_search.responses = [reply, reply]
        scanner = DiscoveryScanner()
        devices = await scanner.discover(0.5)

        # Two search targets, two replies each: one device.
        assert [call["search_target"] for call in fake_search.calls] == list(ssdp.SEARCH_TARGETS)
        assert all(call["target"] == ("239.255.255.250", 1900) for call in fake_search.calls)
        assert len(devices) == 1
        assert devices[0].ip == "192.168.1.20"
        assert devices[0].usn == "uuid:tv-1"
        assert devices[0].st == RCR
        assert scanner.last_error is None

    @pytest.mark.asyncio
    async def test_same_usn_from_different_hosts_are_distinct(self, fake_search):
        fake_search.responses = [
            ssdp_headers(RCR, "uuid:tv-1", host="192.168.1.20"),
            ssdp_headers(RCR, "uuid:tv-1", host="192.168.1.21"),
            ssdp_headers("urn:dial-multiscreen-org:service:dial:1", "uuid:tv-1-dial", server="Samsung"),
        ]
        devices = await DiscoveryScanner(search_targets=(RCR,)).discover(0.5)
        assert sorted(d.key for d in devices) == [
            ("192.168.1.20", "uuid:tv-1"),
            ("192.168.1.20", "uuid:tv-1-dial"),
            ("192.168.1.21", "uuid:tv-1"),
        ]

    @pytest.mark.asyncio
    async def test_descriptor_decides_generic_responders(self, fake_search, descriptor_server):
        descriptor_server.documents["tv.xml"] = SAMSUNG_DESCRIPTOR
        descriptor_server.documents["speaker.xml"] = OTHER_DESCRIPTOR
        fake_search.responses = [
            ssdp_headers("upnp:rootdevice", "uuid:tv", location=descriptor_server.url("tv.xml")),
            ssdp_headers("upnp:rootdevice", "uuid:speaker", location=descriptor_server.url("speaker.xml")),
            ssdp_headers("upnp:rootdevice", "uuid:nothing"),
        ]
        scanner = DiscoveryScanner(search_targets=("upnp:rootdevice",))
        devices = await scanner.discover(1.5)

        assert len(devices) == 1
        assert devices[0].usn == "uuid:tv"
        assert devices[0].friendly_name == "[TV] Living Room"
        assert devices[0].model_name == "QE55Q80T"
        assert devices[0].location == descriptor_server.url("tv.xml")

    @pytest.mark.asyncio
    async def test_descriptor_fetched_once_per_location(self, fake_search, descriptor_server):
        descriptor_server.documents["tv.xml"] = SAMSUNG_DESCRIPTOR
        location = descriptor_server.url("tv.xml")
        fake_search.responses = [
            ssdp_headers(RCR, "uuid:tv::rcr", location=location),
            ssdp_headers(RCR, "uuid:tv::root", location=location),
        ]
        scanner = DiscoveryScanner(search_targets=(RCR,))
        with patch("tvremote.discovery.ssdp.fetch_descriptor", wraps=ssdp.fetch_descriptor) as fetch:
            devices = await scanner.discover(1.5)
        assert len(devices) == 2
        assert fetch.call_count == 1

    @pytest.mark.asyncio
    async def test_scan_ends_within_window(self, fake_search):
        scanner = DiscoveryScanner()
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await scanner.discover(0.3) == []
        # The searches themselves would run for a whole second.
        assert fake_search.calls[0]["timeout"] == 1
        assert loop.time() - started < 0.9

    @pytest.mark.asyncio
    async def test_scans_are_independent(self, fake_search):
        fake_search.responses = [ssdp_headers(RCR, "uuid:tv-1")]
        scanner = DiscoveryScanner()
        first, second = await asyncio.gather(scanner.discover(0.4), scanner.discover(0.4))
        assert len(first) == 1
        assert len(second) == 1
        # A rescan reports the same TV again.
        assert len(await scanner.discover(0.3)) == 1

    @pytest.mark.asyncio
    async def test_socket_failure_sets_last_error(self, fake_search):
        fake_search.error = OSError("no network")
        scanner = DiscoveryScanner()
        loop = asyncio.get_running_loop()
        started = loop.time()
        devices = await scanner.discover(2.0)
        assert devices == []
        assert "no network" in scanner.last_error
        # Every search gave up, so the window is not waited out.
        assert loop.time() - started < 1.0


# ──────────────────────────────────────────────────────────────────
# Wake-on-LAN
# ──────────────────────────────────────────────────────────────────


class TestWakeOnLan:
    def test_magic_packet(self):
        packet = build_magic_packet("AA:BB:CC:DD:EE:FF")
        assert len(packet) == 102
        assert packet[:6] == b"\xff" * 6
        assert packet[6:12] == bytes.fromhex("aabbccddeeff")
        assert packet[-6:] == bytes.fromhex("aabbccddeeff")

    def test_dash_separators(self):
        assert build_magic_packet("aa-bb-cc-dd-ee-ff") == build_magic_packet("aabbccddeeff")

    @pytest.mark.parametrize("mac", ["", "aa:bb:cc", "zz:bb:cc:dd:ee:ff"])
    def test_invalid_mac(self, mac):
        with pytest.raises(ValueError):
            build_magic_packet(mac)

    def test_send_broadcasts(self):
        with patch("wakeonlan.send_magic_packet") as send:
            assert send_magic_packet("aa:bb:cc:dd:ee:ff", "192.168.1.255", 9)
        send.assert_called_once_with("aa:bb:cc:dd:ee:ff", ip_address="192.168.1.255", port=9)

    def test_send_bad_mac_returns_false(self):
        with patch("wakeonlan.send_magic_packet") as send:
            assert send_magic_packet("nope") is False
        send.assert_not_called()

    def test_send_socket_error_returns_false(self):
        with patch("wakeonlan.send_magic_packet", side_effect=OSError("denied")):
            assert send_magic_packet("aa:bb:cc:dd:ee:ff") is False


def test_default_search_targets():
    assert ssdp.SEARCH_TARGETS == (
        "urn:samsung.com:device:RemoteControlReceiver:1",
        "urn:dial-multiscreen-org:service:dial:1",
    )
