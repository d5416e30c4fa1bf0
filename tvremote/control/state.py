"""Value types shared by the control channel and its callers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class KeyMode(str, enum.Enum):
    """How a remote key is delivered (``Cmd`` field of ``ms.remote.control``)."""

    CLICK = "Click"
    PRESS = "Press"
    RELEASE = "Release"


class LaunchMode(str, enum.Enum):
    """``action_type`` of an ``ed.apps.launch`` event."""

    DEEP_LINK = "DEEP_LINK"
    NATIVE_LAUNCH = "NATIVE_LAUNCH"


# ── Connection state ──────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionState:
    """Base of the connection-state union. Exactly one variant is current."""

    @property
    def is_connected(self) -> bool:
        return isinstance(self, Connected)

    @property
    def is_unauthorized(self) -> bool:
        return isinstance(self, Unauthorized)


@dataclass(frozen=True)
class Disconnected(ConnectionState):
    pass


@dataclass(frozen=True)
class Connecting(ConnectionState):
    pass


@dataclass(frozen=True)
class Connected(ConnectionState):
    host: str
    port: int


@dataclass(frozen=True)
class Unauthorized(ConnectionState):
    """The TV rejected the session. Sticky until the next ``connect()``."""

    detail: str | None = None


@dataclass(frozen=True)
class Failed(ConnectionState):
    detail: str = ""


# ── Session / app data ────────────────────────────────────────────


@dataclass(frozen=True)
class SessionConfig:
    """Parameters of one connect attempt. Copied, never mutated, by the channel."""

    host: str
    port: int = 8002
    name: str = "SamsungTvRemote"
    token: str | None = None

    def __post_init__(self) -> None:
        # Blank tokens behave exactly like a missing token.
        token = (self.token or "").strip() or None
        object.__setattr__(self, "token", token)


@dataclass
class AppInfo:
    """An installed app as reported by ``ed.installedApp.get``."""

    app_id: str
    name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppInfo | None:
        """Build from one entry of the listing, or ``None`` without an id."""
        app_id = data.get("appId") or data.get("id")
        if app_id is None or isinstance(app_id, (dict, list)):
            return None
        name = data.get("name")
        return cls(
            app_id=str(app_id),
            name=str(name) if name is not None else None,
            raw=data,
        )
