"""
Request Orchestrator

Runs one image request through:

    ResolveTenant -> ValidateType -> EnsureOriginal -> ResolveDerivativePath
        -> EnsureDerivative -> Serve -> Lifecycle

- EnsureOriginal pulls a missing original from the origin and re-checks,
  with a bounded number of attempts.
- EnsureDerivative regenerates a derivative that is missing, empty, or
  older than its original.
- Concurrent misses on the same key share one fetch / one transform.
- Lifecycle bookkeeping runs after the response (see routes_fastapi).
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .config import Settings
from .errors import (
    FilesystemFailure,
    OriginFetchFailed,
    UnknownTenant,
    UnsupportedMediaType,
    WidthTooLarge,
)
from .fetcher import OriginFetcher
from .lifecycle import CacheLifecycle
from .paths import ArtifactPaths, PathResolver, clean_basename
from .single_flight import SingleFlight
from .transform import ChunkStream, TransformEngine, guess_mime, is_servable_image

logger = logging.getLogger(__name__)


@dataclass
class ServeResult:
    """What to send back for a successful request."""
    paths: ArtifactPaths
    media_type: str
    file: Optional[Path] = None
    stream: Optional[ChunkStream] = None
    cache_hit: bool = True

    @property
    def origin_host(self) -> str:
        return self.paths.origin_host

    @property
    def artifacts(self) -> Tuple[Path, ...]:
        """Files to run lifecycle on: original and derivative, once each."""
        if self.paths.serves_original:
            return (self.paths.original,)
        return (self.paths.original, self.paths.derivative)


def _stat(path: Path) -> Optional[os.stat_result]:
    """stat() that maps "missing" to None and anything else to a 500."""
    try:
        return path.stat()
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        # ValueError: embedded NUL byte in the request path
        raise FilesystemFailure(f"Could not open {path.name!r}: {e}") from e


class RequestOrchestrator:
    """
    Composes resolver, fetcher, engine and lifecycle per request.

    All collaborators are passed in; the settings snapshot is read-only.
    """

    def __init__(
        self,
        settings: Settings,
        resolver: PathResolver,
        fetcher: OriginFetcher,
        engine: TransformEngine,
        lifecycle: CacheLifecycle,
    ):
        self.settings = settings
        self.resolver = resolver
        self.fetcher = fetcher
        self.engine = engine
        self.lifecycle = lifecycle

        self._fetches: SingleFlight = SingleFlight(name="fetch")
        self._transforms: SingleFlight = SingleFlight(name="transform")

    @classmethod
    def from_settings(cls, settings: Settings, http_client=None) -> "RequestOrchestrator":
        """Build the full component graph for a settings snapshot."""
        resolver = PathResolver(settings.storage)
        return cls(
            settings=settings,
            resolver=resolver,
            fetcher=OriginFetcher(resolver, client=http_client, timeout=settings.fetch_timeout),
            engine=TransformEngine(quality=settings.quality, colors=settings.colors),
            lifecycle=CacheLifecycle(resolver, ttl_minutes=settings.ttl),
        )

    async def close(self) -> None:
        await self.fetcher.close()

    # ============================================
    # Entry point
    # ============================================

    async def handle(self, host: str, path: str, width: int = 0, client_ip: str = "") -> ServeResult:
        """
        Serve (host, path, width).

        Args:
            host: Inbound Host header; selects the tenant
            path: Raw request path (cleaned here)
            width: Requested width; 0 serves the original resolution
            client_ip: Requester address, forwarded to the origin

        Raises:
            ImageCacheError subclass carrying the response status.
        """
        origin_host = self.resolve_tenant(host)
        self.validate_width(width)
        basename = clean_basename(path)
        paths = self.resolver.resolve(origin_host, basename, width)
        media_type = self.validate_type(paths)

        await self.ensure_original(paths, client_ip)
        return await self.ensure_derivative(paths, media_type)

    # ============================================
    # States
    # ============================================

    def resolve_tenant(self, host: str) -> str:
        origin_host = self.settings.origin_for(host)
        if origin_host is None:
            raise UnknownTenant(f"Invalid host {host}")
        return origin_host

    def validate_width(self, width: int) -> None:
        if width > self.settings.max_width:
            raise WidthTooLarge(f"Width {width} exceeds maximum {self.settings.max_width}")

    def validate_type(self, paths: ArtifactPaths) -> str:
        mime = guess_mime(paths.original)
        if not is_servable_image(mime):
            raise UnsupportedMediaType(f"Invalid file /{paths.basename}")
        return mime

    async def ensure_original(self, paths: ArtifactPaths, client_ip: str = "") -> None:
        """Make sure a non-empty original is on disk, pulling it if needed."""
        key = (paths.origin_host, paths.basename)
        attempts = 0
        while True:
            info = _stat(paths.original)
            if info is not None and info.st_size > 0:
                return
            if attempts >= self.settings.max_fetch_attempts:
                raise OriginFetchFailed(
                    f"{paths.basename} still missing after {attempts} fetch attempt(s)",
                    status_code=500,
                )
            attempts += 1
            await self._fetches.run(
                key,
                lambda: self.fetcher.fetch(paths.origin_host, paths.basename, client_ip),
            )

    async def ensure_derivative(self, paths: ArtifactPaths, media_type: str) -> ServeResult:
        """Serve the cached derivative, or generate it if missing or stale."""
        if paths.serves_original:
            return ServeResult(paths=paths, media_type=media_type, file=paths.original)

        info = _stat(paths.derivative)
        if info is not None and info.st_size > 0 and not self._is_stale(paths, info):
            return ServeResult(paths=paths, media_type=media_type, file=paths.derivative)

        return await self._generate(paths, media_type)

    def _is_stale(self, paths: ArtifactPaths, derivative: os.stat_result) -> bool:
        original = _stat(paths.original)
        if original is None:
            return False
        stale = derivative.st_mtime < original.st_mtime
        if stale:
            logger.info(f"[Orchestrator] Derivative older than original: {paths.derivative}")
        return stale

    async def _generate(self, paths: ArtifactPaths, media_type: str) -> ServeResult:
        key = (paths.origin_host, paths.basename, paths.width)
        stream = ChunkStream()
        task, leader = self._transforms.start(
            key,
            lambda: self.engine.transform(paths.original, paths.derivative, paths.width, sink=stream),
        )

        if not leader:
            # Someone else is generating; serve the finished file.
            await asyncio.shield(task)
            return ServeResult(paths=paths, media_type=media_type, file=paths.derivative, cache_hit=False)

        await stream.wait_started(task)
        return ServeResult(paths=paths, media_type=media_type, stream=stream, cache_hit=False)
