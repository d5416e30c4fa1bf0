"""tvremote.control — control channel for Samsung Tizen TVs.

Exports:
    ControlChannel   — reconnecting WebSocket session with handshake/token capture
    ConnectionState  — base of the Disconnected/Connecting/Connected/... union
    SessionConfig    — host/port/name/token for one connect attempt
    AppInfo          — one entry of the TV's installed-app listing
    KeyMode          — Click/Press/Release
    LaunchMode       — DEEP_LINK/NATIVE_LAUNCH
    RestClient       — stateless REST helpers for the /api/v2 endpoints
"""

from __future__ import annotations

from tvremote.control.channel import ControlChannel
from tvremote.control.rest import RestClient
from tvremote.control.state import (
    AppInfo,
    Connected,
    Connecting,
    ConnectionState,
    Disconnected,
    Failed,
    KeyMode,
    LaunchMode,
    SessionConfig,
    Unauthorized,
)

__all__ = [
    "AppInfo",
    "Connected",
    "Connecting",
    "ConnectionState",
    "ControlChannel",
    "Disconnected",
    "Failed",
    "KeyMode",
    "LaunchMode",
    "RestClient",
    "SessionConfig",
    "Unauthorized",
]
