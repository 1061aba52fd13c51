"""Forgejo API client"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

from ..error_handling import AuthUnreachableError, UpstreamError

logger = logging.getLogger(__name__)

USER_AGENT = "MCP-Forgejo-Server/0.1.0"
API_PREFIX = "/api/v1"

RETRYABLE_STATUSES = {408, 425, 429, 500, 502, 503, 504}


def _error_message(status: int, body: Any) -> str:
    if isinstance(body, dict) and body.get("message"):
        return f"Forgejo API returned HTTP {status}: {body['message']}"
    if status == 404:
        return "Forgejo API returned HTTP 404: repository or resource not found"
    return f"Forgejo API returned HTTP {status}"


async def _error_body(response: aiohttp.ClientResponse) -> Any:
    # proxies answer with HTML error pages
    try:
        return await response.json(content_type=None)
    except ValueError:
        return None


def classify_response(status: int, body: Any) -> UpstreamError:
    """Turn a non-2xx response into an :class:`UpstreamError`."""
    retryable = status in RETRYABLE_STATUSES or status >= 500
    return UpstreamError(_error_message(status, body), retryable=retryable, status=status)


@dataclass
class ForgejoClient:
    """Forgejo/Gitea REST API v1 client.

    The client owns one ``aiohttp`` session, opened lazily on first use and
    closed by :meth:`close`. Credentials are passed per call and only ever
    placed in the ``Authorization`` header.
    """

    base_url: str = "https://codeberg.org"
    timeout: float = 30.0
    session: Optional[aiohttp.ClientSession] = None
    _owns_session: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")

    def _session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self.session

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{API_PREFIX}/{endpoint.lstrip('/')}"

    @staticmethod
    def _headers(token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        token: Optional[str],
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make a request to the Forgejo API and return the decoded JSON body.

        Raises:
            UpstreamError: non-2xx status (retryable for 429 and 5xx) or a
                network failure (always retryable).
        """
        url = self._url(endpoint)
        try:
            async with self._session().request(
                method, url, headers=self._headers(token), params=params, json=json
            ) as response:
                if response.status >= 400:
                    logger.debug(f"{method} {endpoint} failed with HTTP {response.status}")
                    raise classify_response(response.status, await _error_body(response))
                if response.status == 204 or not await response.read():
                    return None
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamError(
                f"Network error calling Forgejo API: {type(e).__name__}", retryable=True
            ) from None
        except asyncio.TimeoutError:
            raise UpstreamError("Forgejo API request timed out", retryable=True) from None
        except ValueError:
            raise UpstreamError("Forgejo API returned a malformed JSON body", retryable=False) from None

    async def get(self, endpoint: str, token: Optional[str], **kwargs) -> Any:
        """Make GET request to Forgejo API"""
        return await self.request("GET", endpoint, token, **kwargs)

    async def post(self, endpoint: str, token: Optional[str], **kwargs) -> Any:
        """Make POST request to Forgejo API"""
        return await self.request("POST", endpoint, token, **kwargs)

    async def patch(self, endpoint: str, token: Optional[str], **kwargs) -> Any:
        """Make PATCH request to Forgejo API"""
        return await self.request("PATCH", endpoint, token, **kwargs)

    async def verify_token(self, token: str) -> bool:
        """Call ``GET /user`` with ``token``.

        Returns True for 2xx and False for 401/403.

        Raises:
            AuthUnreachableError: any other status or a network failure.
        """
        try:
            async with self._session().get(self._url("/user"), headers=self._headers(token)) as response:
                if 200 <= response.status < 300:
                    return True
                if response.status in (401, 403):
                    return False
                raise AuthUnreachableError(
                    f"Forgejo returned HTTP {response.status} while validating the credential"
                )
        except aiohttp.ClientError as e:
            raise AuthUnreachableError(
                f"Cannot reach {self.base_url} to validate the credential: {type(e).__name__}"
            ) from None

    async def close(self) -> None:
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
