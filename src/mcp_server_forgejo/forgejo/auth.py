"""Credential validation against the Forgejo API.

Decisions are cached per token digest for the auth TTL. The raw token is only
handed to the check; cache keys, decisions, logs and errors carry the digest,
the fingerprint or the masked form.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..cache import SingleFlightCache
from ..error_handling import AuthInvalidError, AuthMissingError, AuthUnreachableError
from ..redaction import mask_token, register_secret, token_cache_key, token_fingerprint

logger = logging.getLogger(__name__)

# Forgejo access tokens are hex; Gitea/Forgejo also accept other url-safe forms
TOKEN_FORMAT = re.compile(r"^[A-Za-z0-9_.\-]+$")

DEFAULT_AUTH_TIMEOUT = 5.0

CredentialCheck = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class AuthDecision:
    valid: bool
    validated_at: float
    fingerprint: str


def validate_token_format(token: Optional[str]) -> str:
    """Check a credential locally, without any network call.

    Returns:
        The stripped token.

    Raises:
        AuthMissingError: token absent or blank.
        AuthInvalidError: token contains characters no Forgejo token has.
    """
    if token is None or not token.strip():
        raise AuthMissingError()
    token = token.strip()
    if not TOKEN_FORMAT.match(token):
        raise AuthInvalidError(
            f"Credential {token_fingerprint(token)} has an invalid format; "
            "tokens contain only letters, digits, '_', '-' and '.'"
        )
    return token


class AuthValidator:
    """Validates credentials once per cache window.

    ``check(token)`` returns True for an accepted credential, False for a
    rejected one, and raises (or times out) when the service cannot answer.
    """

    def __init__(
        self,
        check: CredentialCheck,
        ttl: float = 300.0,
        timeout: float = DEFAULT_AUTH_TIMEOUT,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._credential_check = check
        self.timeout = timeout
        self._clock = clock
        self._cache: SingleFlightCache[AuthDecision] = SingleFlightCache(
            "auth-decision", ttl=ttl, max_entries=max_entries, clock=clock
        )

    @property
    def cache(self) -> SingleFlightCache[AuthDecision]:
        return self._cache

    async def validate(self, token: Optional[str]) -> AuthDecision:
        """Return a cached or fresh decision for ``token``.

        Raises:
            AuthMissingError: no credential; no network call is made.
            AuthInvalidError: the credential is malformed or was rejected.
            AuthUnreachableError: the service could not be reached in time.
        """
        token = validate_token_format(token)
        register_secret(token)
        decision = await self._cache.get(token_cache_key(token), lambda: self._check(token))
        if not decision.valid:
            raise AuthInvalidError(
                f"Credential {mask_token(token)} was rejected by the server; it may be expired or revoked"
            )
        return decision

    async def _check(self, token: str) -> AuthDecision:
        fingerprint = token_fingerprint(token)
        logger.debug(f"Validating credential {fingerprint}")
        try:
            valid = await asyncio.wait_for(self._credential_check(token), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Credential validation for {fingerprint} timed out after {self.timeout}s")
            raise AuthUnreachableError(
                f"Credential validation timed out after {self.timeout:g}s; the server may be unreachable"
            ) from None
        except AuthUnreachableError:
            raise
        except OSError as e:
            raise AuthUnreachableError(
                f"Cannot reach the server to validate the credential: {type(e).__name__}"
            ) from None

        if valid:
            logger.info(f"Credential {fingerprint} validated")
        else:
            logger.warning(f"Credential {fingerprint} was rejected")
        return AuthDecision(valid=valid, validated_at=self._clock(), fingerprint=fingerprint)

    def invalidate(self, token: str) -> bool:
        """Forget the decision for ``token`` (credential rotation)."""
        return self._cache.invalidate(token_cache_key(token.strip()))

    def clear(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        await self._cache.close()
