"""
Settings

The process reads its configuration once at startup into an immutable
Settings snapshot, which is then handed to every component explicitly.

Config document (JSON, local file or http(s) URL):
{
    "hosts": {"img.example.com": "origin.example.com"},
    "storage": "/var/cache/image-resizer",
    "ttl": 60,
    "listen": ":8080",
    "quality": 85,
    "colors": 256,
    "ssl": false,
    "cert": "",
    "key": ""
}
"""

import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/image-resizer/config.json"
REMOTE_CONFIG_TIMEOUT = 10.0


# ============================================
# Config document model
# ============================================

class SettingsFile(BaseModel):
    """Validated shape of the JSON config document."""
    hosts: Dict[str, str] = Field(default_factory=dict, description="Inbound host -> origin host")
    storage: str = Field("", description="Cache root directory")
    ttl: float = Field(60.0, gt=0, description="Artifact time-to-live in minutes")
    listen: str = Field(":8080", description="host:port to bind")
    quality: int = Field(85, ge=1, le=100, description="JPEG quality")
    colors: int = Field(256, ge=2, le=256, description="GIF palette size")
    ssl: bool = False
    cert: str = ""
    key: str = ""

    # Tuning knobs, absent from most config files
    fetch_timeout: float = Field(30.0, gt=0, description="Origin request timeout in seconds")
    max_fetch_attempts: int = Field(2, ge=1, le=5, description="Origin pulls per request")
    max_width: int = Field(4096, ge=1, le=16384, description="Largest width a request may ask for")

    @model_validator(mode="after")
    def _check_tls(self) -> "SettingsFile":
        if self.ssl and not (self.cert and self.key):
            raise ValueError("ssl is enabled but cert/key are not both set")
        return self


# ============================================
# Runtime snapshot
# ============================================

@dataclass(frozen=True)
class Settings:
    """Immutable configuration shared by all request handlers."""
    hosts: Mapping[str, str]
    storage: Path
    ttl: float = 60.0
    listen: str = ":8080"
    quality: int = 85
    colors: int = 256
    ssl: bool = False
    cert: Optional[str] = None
    key: Optional[str] = None
    fetch_timeout: float = 30.0
    max_fetch_attempts: int = 2
    max_width: int = 4096

    def __post_init__(self):
        object.__setattr__(self, "hosts", MappingProxyType(dict(self.hosts)))
        object.__setattr__(self, "storage", Path(self.storage))

    def origin_for(self, host: str) -> Optional[str]:
        """Map an inbound Host header (port ignored) to its origin host."""
        return self.hosts.get(host.split(":")[0])

    def listen_address(self) -> Tuple[str, int]:
        """
        Split `listen` into (host, port); an empty host binds all interfaces.

        IPv6 hosts are written in brackets ("[::]:8080") and returned bare.
        """
        host, _, port = self.listen.rpartition(":")
        if not port.isdigit():
            raise ConfigurationError(f"Invalid listen address: {self.listen!r}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        return host or "0.0.0.0", int(port)


# ============================================
# Loading
# ============================================

def _read_source(source: str) -> str:
    if source.startswith(("http://", "https://")):
        try:
            response = httpx.get(source, timeout=REMOTE_CONFIG_TIMEOUT, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ConfigurationError(f"Could not load remote config file {source}: {e}") from e
        logger.info(f"[Config] Loaded remote config: {source}")
        return response.text

    try:
        text = Path(source).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Could not load config file {source}: {e}") from e
    logger.info(f"[Config] Loaded config file: {source}")
    return text


def parse_settings(document: Dict[str, Any], storage: Optional[str] = None) -> Settings:
    """
    Validate a config document and freeze it into Settings.

    Args:
        document: Decoded JSON config
        storage: Storage directory override (CLI/env); wins over the document

    Raises:
        ConfigurationError: document fails validation.
    """
    try:
        parsed = SettingsFile.model_validate(document)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config: {e}") from e

    storage_dir = storage or parsed.storage or tempfile.gettempdir()

    return Settings(
        hosts=parsed.hosts,
        storage=Path(storage_dir),
        ttl=parsed.ttl,
        listen=parsed.listen,
        quality=parsed.quality,
        colors=parsed.colors,
        ssl=parsed.ssl,
        cert=parsed.cert or None,
        key=parsed.key or None,
        fetch_timeout=parsed.fetch_timeout,
        max_fetch_attempts=parsed.max_fetch_attempts,
        max_width=parsed.max_width,
    )


def load_settings(source: str = DEFAULT_CONFIG_PATH, storage: Optional[str] = None) -> Settings:
    """
    Load settings from a local JSON file or an http(s) URL.

    Raises:
        ConfigurationError: source unreadable, not JSON, or invalid.
    """
    text = _read_source(source)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Config {source} is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"Config {source} must be a JSON object")

    settings = parse_settings(document, storage=storage)
    logger.info(f"[Config] Storage directory is: {settings.storage}")
    logger.info(f"[Config] Serving {len(settings.hosts)} tenant host(s), TTL {settings.ttl} min")
    return settings
