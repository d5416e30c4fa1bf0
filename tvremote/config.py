"""Persisted remote settings (host, port, name, token, mirroring)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

from tvremote.control.state import SessionConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".tvremote" / "config.json"


@dataclass
class RemoteConfig:
    """Connection, pairing and mirroring settings persisted as JSON."""

    host: str = ""
    port: int = 8002
    name: str = "SamsungTvRemote"
    token: str = ""
    mac: str = ""

    # Mirroring
    mirror_port: int = 8899
    mirror_fps: int = 12

    # Discovery
    scan_seconds: float = 2.5

    @classmethod
    def load(cls, path: str | Path = DEFAULT_CONFIG_PATH) -> RemoteConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            config = cls(**filtered)
        else:
            logger.warning("Config not found at %s, using defaults", path)
            config = cls()
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override fields from ``TV_HOST``/``TV_PORT``/``TV_NAME``/``TV_TOKEN``."""
        self.host = os.getenv("TV_HOST", self.host)
        self.port = int(os.getenv("TV_PORT", str(self.port)))
        self.name = os.getenv("TV_NAME", self.name)
        self.token = os.getenv("TV_TOKEN", self.token)

    def save(self, path: str | Path = DEFAULT_CONFIG_PATH) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    def to_session(self) -> SessionConfig:
        return SessionConfig(
            host=self.host,
            port=self.port,
            name=self.name,
            token=self.token or None,
        )

    def remember_token(self, token: str, path: str | Path | None = None) -> None:
        """Store a token issued by the TV, persisting it when ``path`` is given."""
        self.token = token
        if path is not None:
            self.save(path)
            logger.info("Saved paired token to %s", path)
