"""Server configuration: defaults, optional config.json, environment."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWITCHBOARD_"


@dataclass
class ServerConfig:
    """Listener settings. Only the port is normally changed."""

    host: str = "0.0.0.0"
    port: int = 3001
    read_size: int = 1024  # bytes per read from an agent

    def __post_init__(self) -> None:
        self.port = int(self.port)
        self.read_size = int(self.read_size)
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if self.read_size <= 0:
            raise ValueError(f"Invalid read_size: {self.read_size}")

    @classmethod
    def load(cls, path: str | Path) -> ServerConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def apply_env(self, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Override fields from ``SWITCHBOARD_*`` environment variables."""
        environ = os.environ if environ is None else environ
        host = environ.get(f"{ENV_PREFIX}HOST")
        if host:
            self.host = host
        port = environ.get(f"{ENV_PREFIX}PORT")
        if port:
            self.port = int(port)
        read_size = environ.get(f"{ENV_PREFIX}READ_SIZE")
        if read_size:
            self.read_size = int(read_size)
        self.__post_init__()
        return self
