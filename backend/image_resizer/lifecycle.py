"""
Cache Lifecycle Manager

Access-triggered eviction and usage accounting. Runs after a response has
been sent, once per served artifact:

1. stat the artifact (gone or unreadable: log and stop)
2. delete it if older than the TTL or zero bytes
3. append "<size>,<unix_ts>" to the tenant's usage.log

There is no background sweep: an expired artifact that is never requested
again stays on disk. The usage log is never rotated here.
"""

import logging
import time
from pathlib import Path
from typing import Callable, List, Tuple, Union

from .paths import PathResolver

logger = logging.getLogger(__name__)


class CacheLifecycle:
    """
    Applies TTL policy to cached artifacts and records usage.

    Args:
        resolver: Path resolver for the cache root (locates usage logs)
        ttl_minutes: Artifacts older than this are evicted on access
        clock: Time source returning unix seconds
    """

    def __init__(
        self,
        resolver: PathResolver,
        ttl_minutes: float,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.ttl_minutes = ttl_minutes
        self._clock = clock

    def is_expired(self, age_minutes: float, size_bytes: int) -> bool:
        return age_minutes > self.ttl_minutes or size_bytes == 0

    def touch(self, path: Union[str, Path]) -> None:
        """Evaluate one artifact after it was served. Never raises."""
        path = Path(path)
        try:
            info = path.stat()
        except OSError:
            logger.warning(f"[Lifecycle] Could not read fileinfo: {path}")
            return

        now = self._clock()
        age = (now - info.st_mtime) / 60.0
        size = info.st_size

        if self.is_expired(age, size):
            try:
                path.unlink()
                logger.info(f"[Lifecycle] Expired {age:.2f} min: {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"[Lifecycle] Could not remove {path}: {e}")
        else:
            logger.debug(f"[Lifecycle] Cached {age:.2f} min: {path}")

        self._record_usage(path, size, int(now))

    def _record_usage(self, path: Path, size: int, timestamp: int) -> None:
        try:
            log_file = self.resolver.usage_log(self.resolver.origin_host_of(path))
        except ValueError:
            logger.error(f"[Lifecycle] {path} is outside the cache root")
            return

        try:
            with open(log_file, "a", encoding="ascii") as f:
                f.write(f"{size},{timestamp}\n")
        except OSError as e:
            logger.error(f"[Lifecycle] Could not write to {log_file}: {e}")

    def read_usage(self, origin_host: str) -> List[Tuple[int, int]]:
        """
        Parse a tenant's usage log.

        Returns:
            (size_bytes, unix_timestamp) per access, oldest first. Malformed
            lines are skipped; a missing log is an empty list.
        """
        log_file = self.resolver.usage_log(origin_host)
        records: List[Tuple[int, int]] = []
        try:
            with open(log_file, "r", encoding="ascii") as f:
                for line in f:
                    size, _, ts = line.strip().partition(",")
                    if size.isdigit() and ts.isdigit():
                        records.append((int(size), int(ts)))
        except FileNotFoundError:
            return []
        return records
