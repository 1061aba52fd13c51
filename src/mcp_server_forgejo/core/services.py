"""Server-owned collaborators shared by every request."""

import logging
import time
from typing import Callable, Optional

from ..configuration import ServerConfig
from ..forgejo.auth import AuthValidator
from ..forgejo.client import ForgejoClient
from ..git.context import ContextResolver
from ..metrics import MetricsCollector
from ..redaction import register_secret, token_fingerprint

logger = logging.getLogger(__name__)


class ServerServices:
    """Owns the caches, the API client and metrics for one server lifetime.

    Created at startup and closed at shutdown; never re-initialized. The
    repository-context and auth caches are independent: rotating the
    credential only drops auth decisions.
    """

    def __init__(
        self,
        config: ServerConfig,
        *,
        client: Optional[ForgejoClient] = None,
        context_resolver: Optional[ContextResolver] = None,
        auth_validator: Optional[AuthValidator] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.client = client or ForgejoClient(base_url=config.forgejo_url, timeout=config.tool_timeout)
        self.context_resolver = context_resolver or ContextResolver(
            ttl=config.context_cache_ttl,
            max_entries=config.cache_max_entries,
            remote_name=config.remote_name,
            extra_hosts=config.extra_hosts,
            forgejo_url=config.forgejo_url,
            clock=clock,
        )
        self.auth_validator = auth_validator or AuthValidator(
            self.client.verify_token,
            ttl=config.auth_cache_ttl,
            timeout=config.auth_timeout,
            max_entries=config.cache_max_entries,
            clock=clock,
        )
        self.metrics = metrics or MetricsCollector()
        self._token = config.token_value()
        self._closed = False

    @property
    def token(self) -> Optional[str]:
        return self._token

    def credential_fingerprint(self) -> Optional[str]:
        return token_fingerprint(self._token) if self._token else None

    def rotate_token(self, token: Optional[str]) -> None:
        """Replace the credential; cached repository contexts are kept."""
        if self._token:
            self.auth_validator.invalidate(self._token)
        register_secret(token)
        self._token = token or None
        logger.info(f"Credential replaced (now {self.credential_fingerprint() or 'absent'})")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.context_resolver.close()
        await self.auth_validator.close()
        await self.client.close()
        logger.debug("Server services closed")

    async def __aenter__(self) -> "ServerServices":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
