"""Cached repository-context resolution.

Detection reads git metadata from disk, so it runs in a worker thread and its
result is memoized per working directory in a :class:`SingleFlightCache`.
"""

import asyncio
import logging
import os
import time
from typing import Callable, Iterable, Optional, Sequence
from urllib.parse import urlsplit

from ..cache import SingleFlightCache
from .detection import DEFAULT_REMOTE_NAME, detect_repository
from .models import RepositoryContext

logger = logging.getLogger(__name__)

Detector = Callable[..., RepositoryContext]


def normalize_directory(directory: str) -> str:
    """Cache key for a working directory: absolute, normalized, symlinks resolved."""
    return os.path.realpath(os.path.abspath(os.path.expanduser(directory)))


class ContextResolver:
    """Resolves working directories to repository identities.

    Failed detections are never cached; the next call re-attempts detection.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_entries: int = 100,
        remote_name: str = DEFAULT_REMOTE_NAME,
        extra_hosts: Iterable[str] = (),
        forgejo_url: Optional[str] = None,
        detector: Detector = detect_repository,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.remote_name = remote_name
        self.allowed_hosts: Sequence[str] = self._allowed_hosts(extra_hosts, forgejo_url)
        self._detector = detector
        self._cache: SingleFlightCache[RepositoryContext] = SingleFlightCache(
            "repository-context", ttl=ttl, max_entries=max_entries, clock=clock
        )

    @staticmethod
    def _allowed_hosts(extra_hosts: Iterable[str], forgejo_url: Optional[str]) -> Sequence[str]:
        hosts = [host.lower() for host in extra_hosts if host]
        if forgejo_url:
            host = urlsplit(forgejo_url).hostname
            if host and host not in hosts:
                hosts.append(host)
        return tuple(hosts)

    @property
    def cache(self) -> SingleFlightCache[RepositoryContext]:
        return self._cache

    async def resolve(self, directory: str) -> RepositoryContext:
        """Return the repository context for ``directory``.

        Raises:
            ContextError: one of NotARepository, NoRemote, UnrecognizedHost,
                MalformedURL.
        """
        key = normalize_directory(directory)
        return await self._cache.get(key, lambda: self._detect(key))

    async def _detect(self, key: str) -> RepositoryContext:
        started = time.perf_counter()
        try:
            return await asyncio.to_thread(
                self._detector, key, remote_name=self.remote_name, allowed_hosts=self.allowed_hosts
            )
        finally:
            logger.debug(f"Repository detection for {key} took {(time.perf_counter() - started) * 1000:.1f}ms")

    def invalidate(self, directory: str) -> bool:
        """Forget the cached context for ``directory`` (e.g. after its remote changed)."""
        return self._cache.invalidate(normalize_directory(directory))

    def clear(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        await self._cache.close()
