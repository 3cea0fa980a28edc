"""
Session configuration.

Defaults mirror a browser peer: one public STUN server, 16 KiB chunks and a
single ordered channel. Every field can be overridden from the environment
(or a ``.env`` file) with a ``PEERDROP_`` variable.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from .errors import ConfigError
from .utils.env_loader import load_dotenv_early

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS = ["stun:stun.l.google.com:19302"]
DEFAULT_CHANNEL_LABEL = "sendChannel"
CHUNK_SIZE = 16384  # 16KB
DEFAULT_BUFFERED_LOW_THRESHOLD = 65536


@dataclass
class SessionConfig:
    """Peer session configuration"""
    ice_servers: List[str] = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    channel_label: str = DEFAULT_CHANNEL_LABEL
    chunk_size: int = CHUNK_SIZE
    buffered_amount_low_threshold: int = DEFAULT_BUFFERED_LOW_THRESHOLD
    download_dir: Path = field(default_factory=lambda: Path("downloads"))

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ConfigError(
                f"chunk_size must be positive, got {self.chunk_size}",
                {"chunk_size": self.chunk_size}
            )
        if self.buffered_amount_low_threshold < 0:
            raise ConfigError(
                f"buffered_amount_low_threshold must not be negative, got {self.buffered_amount_low_threshold}",
                {"buffered_amount_low_threshold": self.buffered_amount_low_threshold}
            )
        self.download_dir = Path(self.download_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        """Build a config from ``PEERDROP_*`` variables, falling back to defaults"""
        env = os.environ if environ is None else environ
        kwargs = {}

        servers = env.get("PEERDROP_ICE_SERVERS")
        if servers is not None:
            kwargs["ice_servers"] = [s.strip() for s in servers.split(",") if s.strip()]
        if env.get("PEERDROP_CHANNEL_LABEL"):
            kwargs["channel_label"] = env["PEERDROP_CHANNEL_LABEL"]
        if env.get("PEERDROP_CHUNK_SIZE"):
            kwargs["chunk_size"] = _parse_int(env, "PEERDROP_CHUNK_SIZE")
        if env.get("PEERDROP_BUFFERED_LOW_THRESHOLD"):
            kwargs["buffered_amount_low_threshold"] = _parse_int(env, "PEERDROP_BUFFERED_LOW_THRESHOLD")
        if env.get("PEERDROP_DOWNLOAD_DIR"):
            kwargs["download_dir"] = Path(env["PEERDROP_DOWNLOAD_DIR"]).expanduser()

        return cls(**kwargs)


def _parse_int(env: Mapping[str, str], name: str) -> int:
    raw = env[name]
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", {"variable": name}) from None


def load_config() -> SessionConfig:
    """Load .env (if any) and build the session config from the environment"""
    env_path = load_dotenv_early()
    if env_path:
        logger.debug(f"Loaded environment from {env_path}")
    return SessionConfig.from_env()
