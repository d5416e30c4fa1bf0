"""tvremote command line.

Usage::

    python -m tvremote scan
    python -m tvremote --host 192.168.1.20 pair
    python -m tvremote key KEY_VOLUP --times 3
    python -m tvremote text "hello" --end
    python -m tvremote apps
    python -m tvremote browse https://example.com
    python -m tvremote mirror ./frames --fps 12
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tvremote.config import DEFAULT_CONFIG_PATH, RemoteConfig
from tvremote.control import ControlChannel, KeyMode, LaunchMode, RestClient
from tvremote.discovery import DiscoveryScanner, send_magic_packet
from tvremote.mirror import FrameHub, start_mirroring

logger = logging.getLogger("tvremote")


async def _open_channel(config: RemoteConfig, config_path: Path, timeout: float) -> ControlChannel | None:
    """Connect and wait for the handshake verdict; ``None`` unless Connected."""
    channel = ControlChannel()
    channel.on_token(lambda token: config.remember_token(token, config_path))
    await channel.connect_config(config.to_session())
    await channel.wait_for_state(lambda s: s.is_connected or s.is_unauthorized, timeout=timeout)
    if not channel.state.is_connected:
        print(f"Not connected: {channel.state}", file=sys.stderr)
        await channel.aclose()
        return None
    return channel


async def _cmd_scan(args: argparse.Namespace, config: RemoteConfig, config_path: Path) -> int:
    scanner = DiscoveryScanner()
    count = 0
    async for device in scanner.scan(args.seconds or config.scan_seconds):
        count += 1
        print(f"{device.ip}\t{device.friendly_name or '-'}\t{device.model_name or '-'}\t{device.usn or '-'}")
    if scanner.last_error:
        print(scanner.last_error, file=sys.stderr)
        return 1
    if count == 0:
        print("No TVs found", file=sys.stderr)
    return 0


async def _cmd_pair(args, config, config_path) -> int:
    # Without a token the TV shows an approval prompt; allow time to accept it.
    channel = await _open_channel(config, config_path, timeout=60.0)
    if channel is None:
        return 1
    print(f"Connected. Token: {channel.token or '(none issued)'}")
    await channel.aclose()
    return 0


async def _cmd_key(args, config, config_path) -> int:
    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    try:
        if args.hold:
            ok = await channel.hold_key(args.key, args.hold)
        else:
            ok = await channel.send_key(args.key, KeyMode(args.mode), args.times)
    finally:
        await channel.aclose()
    return 0 if ok else 1


async def _cmd_text(args, config, config_path) -> int:
    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    try:
        ok = await channel.send_text(args.text, end=args.end)
    finally:
        await channel.aclose()
    return 0 if ok else 1


async def _cmd_apps(args, config, config_path) -> int:
    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    try:
        apps = await channel.list_installed_apps()
    finally:
        await channel.aclose()
    if apps is None:
        print("No app list received", file=sys.stderr)
        return 1
    for app in apps:
        print(f"{app.app_id}\t{app.name or '-'}")
    return 0


async def _cmd_launch(args, config, config_path) -> int:
    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    try:
        ok = await channel.run_app(args.app_id, LaunchMode(args.launch_mode), args.meta)
    finally:
        await channel.aclose()
    return 0 if ok else 1


async def _cmd_browse(args, config, config_path) -> int:
    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    try:
        ok = await channel.open_browser(args.url)
    finally:
        await channel.aclose()
    return 0 if ok else 1


async def _cmd_info(args, config, config_path) -> int:
    async with RestClient(config.host, config.port) as rest:
        body = await rest.device_info()
    if body is None:
        return 1
    print(body)
    return 0


async def _cmd_wake(args, config, config_path) -> int:
    mac = args.mac or config.mac
    if not mac:
        print("No MAC address given (use --mac or set 'mac' in the config)", file=sys.stderr)
        return 1
    return 0 if send_magic_packet(mac) else 1


def _jpeg_sources(source: Path) -> list[Path]:
    if source.is_dir():
        return sorted(p for p in source.iterdir() if p.suffix.lower() in (".jpg", ".jpeg"))
    return [source]


async def _cmd_mirror(args, config, config_path) -> int:
    frames = [p.read_bytes() for p in _jpeg_sources(Path(args.source))]
    if not frames:
        print(f"No JPEG files in {args.source}", file=sys.stderr)
        return 1

    channel = await _open_channel(config, config_path, timeout=args.timeout)
    if channel is None:
        return 1
    hub = FrameHub()
    fps = args.fps or config.mirror_fps
    try:
        result = await start_mirroring(
            channel, hub,
            port=args.port or config.mirror_port,
            fps=fps,
            local_ip=args.local_ip,
            placeholder=frames[0],
        )
        print(result.detail)
        if not result.ok:
            return 1
        index = 0
        while True:
            hub.publish_frame(frames[index % len(frames)])
            index += 1
            await asyncio.sleep(1.0 / max(1, fps))
    finally:
        await hub.stop()
        await channel.aclose()


_COMMANDS = {
    "scan": _cmd_scan,
    "pair": _cmd_pair,
    "key": _cmd_key,
    "text": _cmd_text,
    "apps": _cmd_apps,
    "launch": _cmd_launch,
    "browse": _cmd_browse,
    "info": _cmd_info,
    "wake": _cmd_wake,
    "mirror": _cmd_mirror,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tvremote", description="Samsung TV remote control")
    parser.add_argument(
        "--config", "-c",
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to config.json (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", default=None, help="TV address (overrides config)")
    parser.add_argument("--tv-port", type=int, default=None, help="TV control port (overrides config)")
    parser.add_argument("--token", default=None, help="Pairing token (overrides config)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=20.0,
        help="Seconds to wait for the handshake",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", help="Find TVs with SSDP")
    p.add_argument("--seconds", type=float, default=None)

    sub.add_parser("pair", help="Connect, approve on the TV, and save the token")

    p = sub.add_parser("key", help="Send a remote key (e.g. KEY_VOLUP)")
    p.add_argument("key")
    p.add_argument("--times", type=int, default=1)
    p.add_argument("--mode", choices=[m.value for m in KeyMode], default=KeyMode.CLICK.value)
    p.add_argument("--hold", type=float, default=None, metavar="SECONDS")

    p = sub.add_parser("text", help="Type text into the focused field")
    p.add_argument("text")
    p.add_argument("--end", action="store_true", help="Finish input after typing")

    sub.add_parser("apps", help="List installed apps")

    p = sub.add_parser("launch", help="Launch an app by id")
    p.add_argument("app_id")
    p.add_argument(
        "--launch-mode",
        choices=[m.value for m in LaunchMode],
        default=LaunchMode.DEEP_LINK.value,
    )
    p.add_argument("--meta", default="", help="metaTag passed to the app")

    p = sub.add_parser("browse", help="Open a URL in the TV browser")
    p.add_argument("url")

    sub.add_parser("info", help="Print the REST device info")

    p = sub.add_parser("wake", help="Send a Wake-on-LAN packet")
    p.add_argument("--mac", default=None)

    p = sub.add_parser("mirror", help="Stream JPEG file(s) to the TV browser")
    p.add_argument("source", help="JPEG file or directory of JPEGs")
    p.add_argument("--port", type=int, default=None, help="Local HTTP port for the stream")
    p.add_argument("--fps", type=int, default=None)
    p.add_argument("--local-ip", default=None, help="Address the TV should fetch from")
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config_path = Path(args.config)
    config = RemoteConfig.load(config_path)
    if args.host:
        config.host = args.host
    if args.tv_port:
        config.port = args.tv_port
    if args.token:
        config.token = args.token

    if args.command not in ("scan", "wake") and not config.host:
        parser.error("no TV host configured (use --host or run 'scan')")

    try:
        code = asyncio.run(_COMMANDS[args.command](args, config, config_path))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
