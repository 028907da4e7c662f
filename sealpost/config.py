"""Client configuration and transport policy."""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from .exceptions import ConfigurationError

MAX_CHUNK = 900
MIN_CHUNK = 50
DEFAULT_CHUNK = 140
DEFAULT_DELAY = 1.0
MIN_DELAY = 0.0

DEFAULT_RELAY_URL = "https://ntfy.sh"
DEFAULT_KEYS_DIR = "~/.sealpost"


@dataclass(frozen=True)
class TransportPolicy:
    """Bounds applied to every send and receive.

    Chunk limits guard the relay's body size limit: a raw chunk grows through
    two base64 passes plus the sealed box overhead before it is posted.
    """

    max_chunk: int = MAX_CHUNK
    min_chunk: int = MIN_CHUNK
    default_chunk: int = DEFAULT_CHUNK
    default_delay: float = DEFAULT_DELAY
    min_delay: float = MIN_DELAY
    continue_on_error: bool = True

    def clamp_chunk_size(self, size: Optional[int]) -> int:
        if size is None:
            return self.default_chunk
        if size > self.max_chunk or size < self.min_chunk:
            return self.min_chunk
        return size

    def clamp_delay(self, delay: Optional[float]) -> float:
        if delay is None:
            return self.default_delay
        if not math.isfinite(delay):
            raise ConfigurationError(f"Delay must be a finite number of seconds, got {delay}")
        return max(delay, self.min_delay)


@dataclass(frozen=True)
class ClientConfig:
    keys_dir: str = DEFAULT_KEYS_DIR
    relay_url: str = DEFAULT_RELAY_URL
    timeout: Optional[float] = 10.0
    policy: TransportPolicy = field(default_factory=TransportPolicy)

    def __post_init__(self):
        try:
            url = httpx.URL(self.relay_url)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid relay URL {self.relay_url!r}: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(f"Relay URL must be http(s)://host, got {self.relay_url!r}")

    @classmethod
    def from_env(cls, keys_dir: Optional[str] = None, relay_url: Optional[str] = None,
                 **kwargs) -> "ClientConfig":
        """Build a config, letting explicit values win over SEALPOST_* variables."""
        return cls(
            keys_dir=keys_dir or os.environ.get("SEALPOST_HOME", DEFAULT_KEYS_DIR),
            relay_url=relay_url or os.environ.get("SEALPOST_RELAY", DEFAULT_RELAY_URL),
            **kwargs,
        )

    @property
    def keys_path(self) -> Path:
        return Path(os.path.expanduser(self.keys_dir))

    @property
    def relay_base(self) -> str:
        return self.relay_url.rstrip("/")

    def private_key_path(self, name: str) -> Path:
        return self.keys_path / f"{name}.key"

    def public_key_path(self, name: str) -> Path:
        return self.keys_path / f"{name}.pub"

    def mark_path(self, name: str) -> Path:
        return self.keys_path / f"{name}.mark"

    def ensure_dirs(self):
        try:
            self.keys_path.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise ConfigurationError(f"Cannot create keys directory {self.keys_path}: {e}") from e
        if not os.access(self.keys_path, os.W_OK | os.X_OK):
            raise ConfigurationError(f"Keys directory {self.keys_path} is not writable")
