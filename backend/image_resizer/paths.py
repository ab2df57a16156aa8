"""
Cache Path Resolver

Maps (origin host, basename, width) onto the on-disk cache layout:

storage_root/
└── <origin-host>/
    ├── orig/<basename>          original, as pulled from the origin
    ├── <width>/<basename>       one derivative per requested width
    └── usage.log                "<size>,<unix_ts>" per access

Pure path arithmetic, no I/O.
"""

import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Union

# Directory holding originals; also the derivative directory for width 0
ORIGINAL_DIR = "orig"
USAGE_LOG_NAME = "usage.log"


@dataclass(frozen=True)
class ArtifactPaths:
    """Canonical locations for one request."""
    origin_host: str
    basename: str
    width: int
    original: Path
    derivative: Path
    usage_log: Path

    @property
    def serves_original(self) -> bool:
        """True when no scaling was requested and the derivative is the original."""
        return self.derivative == self.original


def clean_basename(path: str) -> str:
    """
    Normalize a request path into a basename safe to join under a tenant dir.

    The path is resolved against a virtual root, so leading ".." components
    are dropped instead of climbing out of the cache tree.

    Examples:
        "photos/./a.jpg/"     -> "photos/a.jpg"
        "../../etc/passwd"    -> "etc/passwd"
        "a/b/../c.png"        -> "a/c.png"
    """
    cleaned = posixpath.normpath("/" + path.rstrip("/"))
    # normpath keeps a leading "//" (POSIX allows it), so strip every slash
    return cleaned.lstrip("/")


class PathResolver:
    """Resolves cache locations under a single storage root."""

    def __init__(self, storage_root: Union[str, Path]):
        self.storage_root = Path(storage_root)

    def tenant_dir(self, origin_host: str) -> Path:
        return self.storage_root / origin_host

    def usage_log(self, origin_host: str) -> Path:
        return self.tenant_dir(origin_host) / USAGE_LOG_NAME

    def resolve(self, origin_host: str, basename: str, width: int = 0) -> ArtifactPaths:
        """
        Build the original/derivative/usage-log paths for a request.

        Args:
            origin_host: Logical origin host the tenant maps to
            basename: Output of clean_basename()
            width: Requested width in pixels; 0 means native resolution

        Returns:
            ArtifactPaths for the request.
        """
        if width < 0:
            raise ValueError(f"width must be >= 0, got {width}")

        tenant = self.tenant_dir(origin_host)
        width_dir = str(width) if width > 0 else ORIGINAL_DIR
        return ArtifactPaths(
            origin_host=origin_host,
            basename=basename,
            width=width,
            original=tenant / ORIGINAL_DIR / basename,
            derivative=tenant / width_dir / basename,
            usage_log=tenant / USAGE_LOG_NAME,
        )

    def origin_host_of(self, path: Union[str, Path]) -> str:
        """
        Inverse lookup: which tenant directory does a cached artifact live in.

        Raises:
            ValueError: path is not inside the storage root.
        """
        relative = Path(path).relative_to(self.storage_root)
        if not relative.parts:
            raise ValueError(f"{path} is the storage root, not an artifact")
        return relative.parts[0]
