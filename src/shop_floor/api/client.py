"""Authenticated JSON client for the manufacturing backend."""

import logging
from typing import Any, Optional

import httpx

from shop_floor.api.errors import HttpError, NetworkError

logger = logging.getLogger(__name__)


class ApiClient:
    """Issues bearer-token requests against the REST backend.

    One instance per session. It keeps an ``httpx.AsyncClient`` open so
    cookies persist between calls, and never retries on its own.
    """

    def __init__(self, base_url: str, token: Optional[str] = None,
                 timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._token = token or None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def set_token(self, token: Optional[str]):
        """Swap the bearer token (after login or a token refresh)."""
        self._token = token or None

    async def call(self, method: str, path: str,
                   body: Optional[dict] = None) -> Any:
        """Send one request and return the decoded JSON body.

        Raises ``HttpError`` for non-2xx answers and ``NetworkError`` when
        no answer arrived at all.
        """
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.debug(f"{method} {path}")
        try:
            response = await self._http.request(
                method, path, json=body, headers=headers,
            )
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            data = _json_or_empty(response)
            message = ""
            if isinstance(data, dict):
                message = data.get("message") or data.get("error") or ""
            raise HttpError(response.status_code, str(message))

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"{method} {path}: undecodable success body")
            raise HttpError(
                response.status_code, "Invalid JSON response"
            ) from e

    async def aclose(self):
        """Close the underlying connection pool."""
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}
