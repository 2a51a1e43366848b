"""
Bearer token cache for the imagery identity endpoint.

One token per cache instance. Refresh is single-flight: concurrent callers
that find the token missing or about to expire wait on one lock, and only
the first performs the client-credentials request.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from core.config import settings
from core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class TokenCache:
    """
    Client-credentials token holder.

    The stored expiry is the token's real lifetime minus the safety margin, so
    get_token() never hands out a token that would expire mid-request.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        expiry_margin: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client_id = client_id if client_id is not None else settings.COPERNICUS_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.COPERNICUS_CLIENT_SECRET
        self.token_url = token_url or settings.COPERNICUS_TOKEN_URL
        self.expiry_margin = expiry_margin if expiry_margin is not None else settings.IMAGERY_TOKEN_EXPIRY_MARGIN
        self._http_client = http_client
        self._clock = clock

        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def bind(self, http_client: httpx.AsyncClient) -> None:
        """Use the given client for identity requests unless one was injected."""
        if self._http_client is None:
            self._http_client = http_client

    def _is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self) -> str:
        if self._is_valid():
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid():
                return self._token
            return await self._refresh()

    def invalidate(self, stale_token: Optional[str] = None) -> None:
        """
        Drop the cached token (e.g. after the processing endpoint answered 401).

        With stale_token given, the cache is only cleared while it still holds
        that token; a token another request already refreshed is kept.
        """
        if stale_token is not None and self._token != stale_token:
            return
        self._token = None
        self._expires_at = 0.0

    async def _refresh(self) -> str:
        if not self.client_id or not self.client_secret:
            raise AuthenticationError(
                "Imagery client credentials are not configured",
                context={"token_url": self.token_url}
            )
        if self._http_client is None:
            raise AuthenticationError(
                "Token cache has no HTTP client bound",
                context={"token_url": self.token_url}
            )

        logger.info("Requesting new imagery access token")
        try:
            response = await self._http_client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(
                f"Token request failed: {e}",
                context={"token_url": self.token_url},
                original_exception=e
            )

        if response.status_code >= 400:
            raise AuthenticationError(
                f"Token request rejected with HTTP {response.status_code}",
                context={
                    "token_url": self.token_url,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                }
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError(
                "Token response is not valid JSON",
                context={"token_url": self.token_url},
                original_exception=e
            )

        token = payload.get("access_token")
        if not token:
            raise AuthenticationError(
                "Token response has no access_token",
                context={"token_url": self.token_url, "keys": sorted(payload)}
            )

        expires_in = int(payload.get("expires_in", 3600))
        self._token = token
        self._expires_at = self._clock() + max(0, expires_in - self.expiry_margin)
        self.refresh_count += 1

        logger.info(f"Imagery access token refreshed (valid for {expires_in}s)")
        return token
