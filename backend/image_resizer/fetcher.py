"""
Origin Fetcher

Pulls a missing original from the tenant's origin server:

    GET http://<origin-host>/<basename>
    X-Forwarded-For: <requester ip>

The body is streamed into a temporary file next to the destination and
moved into place with os.replace, so a concurrent reader sees either no
original or the complete one. One attempt per call, no retry.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import httpx

from .errors import OriginFetchFailed
from .paths import PathResolver

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of a successful origin pull."""
    stored_at: Path
    status_code: int
    size_bytes: int


def temp_path_for(destination: Path) -> Path:
    """Hidden sibling of destination, unique per writer."""
    return destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:12]}.tmp")


class OriginFetcher:
    """
    Fetches originals into the cache tree.

    The httpx client is shared for the lifetime of the process; pass one in
    to control transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        resolver: PathResolver,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.resolver = resolver
        self._owns_client = client is None
        self.http_client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"Accept": "image/*,*/*;q=0.8"},
        )

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self.http_client.aclose()

    @staticmethod
    def origin_url(origin_host: str, basename: str) -> str:
        return f"http://{origin_host}/{quote(basename, safe='/')}"

    async def fetch(self, origin_host: str, basename: str, requester_ip: str = "") -> FetchResult:
        """
        Download the original for (origin_host, basename).

        Args:
            origin_host: Tenant's origin host
            basename: Cleaned request path
            requester_ip: Client address, forwarded for the origin's audit logs

        Returns:
            FetchResult describing the stored file.

        Raises:
            OriginFetchFailed: origin status >= 400 (status propagated),
                transport failure or filesystem failure (500).
        """
        url = self.origin_url(origin_host, basename)
        destination = self.resolver.resolve(origin_host, basename).original
        headers = {"X-Forwarded-For": requester_ip} if requester_ip else {}

        logger.info(f"[Fetcher] Downloading {url} for {requester_ip or '-'}")

        try:
            async with self.http_client.stream("GET", url, headers=headers) as response:
                if response.status_code >= 400:
                    reason = f"{response.status_code} {response.reason_phrase}".strip()
                    logger.warning(f"[Fetcher] Origin answered {reason}: {url}")
                    raise OriginFetchFailed(reason, status_code=response.status_code)

                size = await self._store(response, destination)
                status_code = response.status_code
        except httpx.HTTPError as e:
            logger.error(f"[Fetcher] Transport error for {url}: {e}")
            raise OriginFetchFailed(f"Failed to fetch {url}: {e}", status_code=500) from e

        logger.info(f"[Fetcher] Stored {destination} ({size} bytes)")
        return FetchResult(stored_at=destination, status_code=status_code, size_bytes=size)

    async def _store(self, response: httpx.Response, destination: Path) -> int:
        """Stream the response body into destination via a temp file."""
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"[Fetcher] Could not create {destination.parent}: {e}")
            raise OriginFetchFailed(str(e), status_code=500) from e

        tmp_path = temp_path_for(destination)
        size = 0
        try:
            with open(tmp_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    size += len(chunk)
            os.replace(tmp_path, destination)
        except OSError as e:
            logger.error(f"[Fetcher] Could not write {destination}: {e}")
            _discard(tmp_path)
            raise OriginFetchFailed(str(e), status_code=500) from e
        except BaseException:
            # transport errors and cancellation mid-body
            _discard(tmp_path)
            raise
        return size


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Fetcher] Could not remove temp file {path}: {e}")
