"""Wire format of the Samsung Tizen remote-control WebSocket API.

Outbound frames are single JSON objects::

    {"method": "ms.remote.control", "params": {...}}
    {"method": "ms.channel.emit",   "params": {"event": ..., "to": ..., "data": {...}}}

Inbound frames carry an ``event`` name and an optional ``data`` object.
"""

from __future__ import annotations

import base64
import json
from typing import Any
from urllib.parse import quote

from tvremote.control.state import AppInfo, KeyMode, LaunchMode

SECURE_PORT = 8002
CHANNEL_NAME = "samsung.remote.control"
BROWSER_APP_ID = "org.tizen.browser"

# Inbound events
EVENT_CONNECT = "ms.channel.connect"
EVENT_UNAUTHORIZED = "ms.channel.unauthorized"
EVENT_ERROR = "ms.error"
EVENT_IME_START = "ms.remote.imeStart"
EVENT_IME_END = "ms.remote.imeEnd"
EVENT_D2D = "d2d_service_message"

# Emitted (and echoed back for the app list)
EVENT_APP_LAUNCH = "ed.apps.launch"
EVENT_APP_LIST = "ed.installedApp.get"
EVENT_TEXT_RECEIVED = "custom.remote.textReceived"

# Housekeeping chatter the TV sends before the handshake verdict.
HANDSHAKE_NOISE = frozenset({
    "ed.edenTV.update",
    "ms.voiceApp.hide",
    "ms.channel.clientConnect",
    "ms.channel.clientDisconnect",
    "ms.channel.ready",
})


class ProtocolError(ValueError):
    """Raised for inbound frames that are not JSON objects with an event."""


def build_url(host: str, port: int, name: str, token: str | None = None) -> str:
    """Return the control-channel URL; ``wss`` only on the secure port."""
    scheme = "wss" if port == SECURE_PORT else "ws"
    encoded_name = base64.b64encode(name.encode("utf-8")).decode("ascii")
    url = (
        f"{scheme}://{host}:{port}/api/v2/channels/{CHANNEL_NAME}"
        f"?name={quote(encoded_name, safe='')}"
    )
    token = (token or "").strip()
    if token:
        url += f"&token={quote(token, safe='')}"
    return url


def encode(method: str, params: dict[str, Any]) -> str:
    return json.dumps({"method": method, "params": params}, separators=(",", ":"))


def key_frame(key: str, mode: KeyMode = KeyMode.CLICK) -> str:
    return encode("ms.remote.control", {
        "Cmd": KeyMode(mode).value,
        "DataOfCmd": key,
        "Option": "false",
        "TypeOfRemote": "SendRemoteKey",
    })


def move_frame(dx: int, dy: int, duration_ms: int = 0) -> str:
    return encode("ms.remote.control", {
        "Cmd": "Move",
        "Position": {"x": dx, "y": dy, "Time": str(duration_ms)},
        "TypeOfRemote": "ProcessMouseDevice",
    })


def text_frame(text: str) -> str:
    """Text is sent base64-encoded; ``DataOfCmd`` names the encoding."""
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return encode("ms.remote.control", {
        "Cmd": encoded,
        "DataOfCmd": "base64",
        "TypeOfRemote": "SendInputString",
    })


def text_end_frame() -> str:
    return encode("ms.remote.control", {"TypeOfRemote": "SendInputEnd"})


def emit_frame(event: str, to: str = "host", data: dict[str, Any] | None = None) -> str:
    params: dict[str, Any] = {"event": event, "to": to}
    if data is not None:
        params["data"] = data
    return encode("ms.channel.emit", params)


def text_start_frame() -> str:
    return emit_frame(EVENT_TEXT_RECEIVED, to="broadcast")


def launch_frame(
    app_id: str,
    launch_mode: LaunchMode = LaunchMode.DEEP_LINK,
    meta_tag: str = "",
) -> str:
    return emit_frame(EVENT_APP_LAUNCH, data={
        "action_type": LaunchMode(launch_mode).value,
        "appId": app_id,
        "metaTag": meta_tag,
    })


def app_list_frame() -> str:
    return emit_frame(EVENT_APP_LIST)


def parse_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode one inbound frame.

    Raises:
        ProtocolError: not UTF-8 JSON, not an object, or no string ``event``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError("binary frame is not UTF-8") from exc
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"frame is not JSON: {exc}") from exc
    if not isinstance(frame, dict):
        raise ProtocolError("frame is not a JSON object")
    if not isinstance(frame.get("event"), str):
        raise ProtocolError("frame has no event")
    return frame


def parse_app_list(frame: dict[str, Any]) -> list[AppInfo] | None:
    """Extract ``data.data`` from an app-list response.

    Entries without an app id are skipped; a missing or non-list payload
    yields ``None``.
    """
    data = frame.get("data")
    if not isinstance(data, dict):
        return None
    entries = data.get("data")
    if not isinstance(entries, list):
        return None
    apps = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        app = AppInfo.from_dict(entry)
        if app is not None:
            apps.append(app)
    return apps
